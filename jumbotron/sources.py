# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from .errors import ConfigUnavailable, NoValidSources, ProbeToolMissing
from .models import ProbeResult

LOG = logging.getLogger("jumbotron.sources")

COMMENT_MARKER = "#"

Prober = Callable[[str], ProbeResult]


def parse_source_lines(text: str) -> List[str]:
    out: List[str] = []
    for line in text.splitlines():
        line = line.split(COMMENT_MARKER, 1)[0].strip()
        if line:
            out.append(line)
    return out


def read_source_list(path: str | Path) -> List[str]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigUnavailable(str(p), str(e)) from e
    return parse_source_lines(text)


def fingerprint(urls: Iterable[str]) -> str:
    """Order-sensitive SHA-256 of the URL list, one URL per line."""
    h = hashlib.sha256()
    for url in urls:
        h.update(url.encode("utf-8"))
        h.update(b"\n")
    return h.hexdigest()


@dataclass(frozen=True)
class SourceSet:
    urls: Tuple[str, ...]

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.urls)

    def __len__(self) -> int:
        return len(self.urls)

    def __iter__(self) -> Iterator[str]:
        return iter(self.urls)


class SourceValidator:
    def __init__(self, prober: Prober) -> None:
        self.prober = prober

    def validate(
        self, candidates: Sequence[str], shutdown: Optional[threading.Event] = None
    ) -> List[str]:
        good: List[str] = []
        for url in candidates:
            if shutdown is not None and shutdown.is_set():
                LOG.info("shutdown requested; abandoning source validation")
                break
            try:
                result = self.prober(url)
            except ProbeToolMissing as e:
                LOG.warning("%s; treating all %d source(s) as valid", e, len(candidates))
                return list(candidates)
            if result.reachable:
                good.append(url)
            elif shutdown is not None and shutdown.is_set():
                break
            else:
                LOG.warning("source failed probe, skipping: %s (%s)", url, result.error)
        return good


def collect_sources(
    path: str | Path,
    validator: SourceValidator,
    shutdown: Optional[threading.Event] = None,
) -> SourceSet:
    """Read and validate the source list once.

    Raises ConfigUnavailable or NoValidSources; both are retryable.
    """
    candidates = read_source_list(path)
    if not candidates:
        raise NoValidSources(f"No source URLs listed in {path}")
    valid = validator.validate(candidates, shutdown)
    if not valid:
        raise NoValidSources(f"No valid sources among {len(candidates)} candidate(s)")
    return SourceSet(tuple(valid))
