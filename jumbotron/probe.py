# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import subprocess
import threading
import time
from typing import List, Optional

from .errors import ProbeToolMissing
from .models import ProbeResult

LOG = logging.getLogger("jumbotron.probe")

# Extra subprocess headroom on top of ffprobe's own I/O timeout.
TIMEOUT_SLACK_S = 2.0


def _ffprobe_argv(url: str, *, ffprobe: str, timeout_s: float) -> List[str]:
    # Only ask whether a first video stream exists; keep output minimal.
    return [
        ffprobe,
        "-v",
        "error",
        "-rw_timeout",
        str(int(timeout_s * 1_000_000)),
        "-select_streams",
        "v:0",
        "-show_entries",
        "stream=index",
        "-of",
        "csv=p=0",
        url,
    ]


def probe(
    url: str,
    *,
    ffprobe: str = "ffprobe",
    timeout_s: float = 5.0,
    shutdown: Optional[threading.Event] = None,
    tick_s: float = 0.1,
) -> ProbeResult:
    """Check that ``url`` is a live source with at least one video stream.

    Raises ProbeToolMissing when the ffprobe binary cannot be executed; every
    other failure is reported as an unreachable result. ffprobe is killed
    as soon as ``shutdown`` is set.
    """
    argv = _ffprobe_argv(url, ffprobe=ffprobe, timeout_s=timeout_s)
    started = time.monotonic()
    deadline = started + timeout_s + TIMEOUT_SLACK_S
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ProbeToolMissing(f"{ffprobe} not usable: {e}") from e
    except OSError as e:
        return ProbeResult(url=url, reachable=False, error=str(e),
                           elapsed_s=time.monotonic() - started)

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=tick_s)
            break
        except subprocess.TimeoutExpired:
            if shutdown is not None and shutdown.is_set():
                error = "probe interrupted by shutdown"
            elif time.monotonic() >= deadline:
                error = "ffprobe timeout"
            else:
                continue
            proc.kill()
            proc.communicate()
            return ProbeResult(url=url, reachable=False, error=error,
                               elapsed_s=time.monotonic() - started)

    elapsed = time.monotonic() - started
    if proc.returncode != 0:
        err = (stderr or stdout or "ffprobe failed").strip()
        return ProbeResult(url=url, reachable=False, error=err, elapsed_s=elapsed)
    LOG.debug("probe ok: %s (%.2fs)", url, elapsed)
    return ProbeResult(url=url, reachable=True, elapsed_s=elapsed)


class FfprobeProber:
    """Callable probe bound to one ffprobe binary, timeout and shutdown event."""

    def __init__(
        self,
        *,
        ffprobe: str = "ffprobe",
        timeout_s: float = 5.0,
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        self.ffprobe = ffprobe
        self.timeout_s = timeout_s
        self.shutdown = shutdown

    def __call__(self, url: str) -> ProbeResult:
        return probe(url, ffprobe=self.ffprobe, timeout_s=self.timeout_s, shutdown=self.shutdown)
