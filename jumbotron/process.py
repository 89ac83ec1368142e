# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .errors import ChildSpawnFailure
from .pipelines import PipelineSpec

LOG = logging.getLogger("jumbotron.process")


@dataclass
class ProcHandle:
    popen: subprocess.Popen
    spec: PipelineSpec
    started_at: float = field(default_factory=time.time)

    @property
    def pid(self) -> int:
        return self.popen.pid


@dataclass(frozen=True)
class ExitStatus:
    returncode: int
    forced: bool = False

    @property
    def abnormal(self) -> bool:
        return self.returncode != 0

    @property
    def shell_code(self) -> int:
        # Popen reports death-by-signal as -signum; shells report 128+signum.
        if self.returncode < 0:
            return 128 - self.returncode
        return self.returncode


def start_process(spec: PipelineSpec) -> ProcHandle:
    # Start a new process group so we can terminate the whole pipeline.
    # stdout/stderr are inherited so ffmpeg output lands in the container log.
    try:
        popen = subprocess.Popen(spec.argv, stdin=subprocess.DEVNULL, preexec_fn=os.setsid)
    except (OSError, subprocess.SubprocessError) as e:
        raise ChildSpawnFailure(f"failed to start {spec.argv[0]}: {e}") from e
    return ProcHandle(popen=popen, spec=spec)


def _signal_group(handle: ProcHandle, sig: int) -> None:
    try:
        os.killpg(os.getpgid(handle.pid), sig)
    except ProcessLookupError:
        pass


def stop_process(handle: ProcHandle, sig: int = signal.SIGTERM, timeout_s: float = 5.0) -> ExitStatus:
    rc = handle.popen.poll()
    if rc is not None:
        return ExitStatus(returncode=rc)
    _signal_group(handle, sig)
    try:
        return ExitStatus(returncode=handle.popen.wait(timeout=timeout_s))
    except subprocess.TimeoutExpired:
        LOG.warning("pid %d ignored signal %d for %.1fs; killing", handle.pid, sig, timeout_s)
        _signal_group(handle, signal.SIGKILL)
        return ExitStatus(returncode=handle.popen.wait(timeout=timeout_s), forced=True)


class ProcessSupervisor:
    """Owns the single pipeline process slot."""

    def __init__(self, *, grace_s: float = 5.0, tick_s: float = 0.5) -> None:
        self.grace_s = grace_s
        self.tick_s = tick_s
        self._handle: Optional[ProcHandle] = None

    @property
    def handle(self) -> Optional[ProcHandle]:
        return self._handle

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.popen.poll() is None

    def spawn(self, spec: PipelineSpec) -> ProcHandle:
        if self.running:
            raise RuntimeError("a pipeline process is already running")
        LOG.info("exec: %s", spec.pretty)
        handle = start_process(spec)
        self._handle = handle
        LOG.info("pipeline started pid=%d inputs=%d", handle.pid, spec.inputs)
        return handle

    def _finish(self, status: ExitStatus) -> ExitStatus:
        handle = self._handle
        self._handle = None
        if handle is not None:
            uptime = time.time() - handle.started_at
            if status.abnormal:
                LOG.warning("pipeline pid=%d exited rc=%d after %.0fs", handle.pid, status.returncode, uptime)
            else:
                LOG.info("pipeline pid=%d exited cleanly after %.0fs", handle.pid, uptime)
        return status

    def wait(
        self,
        shutdown: threading.Event,
        interrupt: Optional[Callable[[], bool]] = None,
    ) -> Optional[ExitStatus]:
        """Block until the child exits.

        Returns None, leaving the child running, when ``shutdown`` is set or
        ``interrupt()`` returns true first. Abnormal exits are reported, not
        raised.
        """
        handle = self._handle
        if handle is None:
            raise RuntimeError("no pipeline process to wait for")
        while True:
            try:
                rc = handle.popen.wait(timeout=self.tick_s)
            except subprocess.TimeoutExpired:
                pass
            else:
                return self._finish(ExitStatus(returncode=rc))
            if shutdown.is_set():
                return None
            if interrupt is not None and interrupt():
                return None

    def terminate(self, sig: int = signal.SIGTERM) -> Optional[ExitStatus]:
        handle = self._handle
        if handle is None:
            return None
        LOG.info("stopping pipeline pid=%d (signal %d, grace %.1fs)", handle.pid, sig, self.grace_s)
        return self._finish(stop_process(handle, sig=sig, timeout_s=self.grace_s))
