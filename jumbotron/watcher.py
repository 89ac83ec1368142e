# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import Settings

LOG = logging.getLogger("jumbotron.watcher")

WATCHED_EVENTS = frozenset(
    {EVENT_TYPE_CREATED, EVENT_TYPE_MODIFIED, EVENT_TYPE_CLOSED, EVENT_TYPE_DELETED, EVENT_TYPE_MOVED}
)


class ChangeWatcher:
    """Wakes the control loop when the source list file changes.

    ``arm()`` sets the baseline, ``poll()`` checks without blocking and
    ``wait()`` blocks until a change, shutdown, or the optional timeout.
    """

    tick_s: float = 0.25

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def arm(self) -> None:
        raise NotImplementedError

    def poll(self) -> bool:
        raise NotImplementedError

    def wait(self, shutdown: threading.Event, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.poll():
                return True
            tick = self.tick_s
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                tick = min(tick, remaining)
            if shutdown.wait(tick):
                return False

    def close(self) -> None:
        pass


class PollingWatcher(ChangeWatcher):
    def __init__(self, path: str | Path, poll_interval: float = 10.0) -> None:
        super().__init__(path)
        self.poll_interval = poll_interval
        self.tick_s = poll_interval
        self._last_hash = ""
        self._next_check = 0.0

    def _file_hash(self) -> str:
        try:
            return hashlib.sha256(self.path.read_bytes()).hexdigest()
        except OSError:
            return ""

    def arm(self) -> None:
        self._last_hash = self._file_hash()
        self._next_check = time.monotonic() + self.poll_interval

    def poll(self) -> bool:
        now = time.monotonic()
        if now < self._next_check:
            return False
        self._next_check = now + self.poll_interval
        current = self._file_hash()
        # A vanished file is not a change; wait for it to come back.
        if current and current != self._last_hash:
            self._last_hash = current
            return True
        return False


class _FileEventHandler(FileSystemEventHandler):
    def __init__(self, target: str, changed: threading.Event) -> None:
        self.target = target
        self.changed = changed

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in WATCHED_EVENTS:
            return
        paths = {os.path.abspath(os.fsdecode(event.src_path))}
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.add(os.path.abspath(os.fsdecode(dest)))
        if self.target in paths:
            LOG.debug("%s: %s", event.event_type, self.target)
            self.changed.set()


class EventWatcher(ChangeWatcher):
    """Filesystem-event watcher on the file's parent directory."""

    def __init__(self, path: str | Path) -> None:
        super().__init__(path)
        self._changed = threading.Event()
        self._observer = Observer()
        target = os.path.abspath(str(self.path))
        self._observer.schedule(_FileEventHandler(target, self._changed), os.path.dirname(target), recursive=False)
        self._observer.daemon = True
        self._observer.start()

    def arm(self) -> None:
        self._changed.clear()

    def poll(self) -> bool:
        if self._changed.is_set():
            self._changed.clear()
            return True
        return False

    def close(self) -> None:
        self._observer.stop()
        self._observer.join(timeout=2.0)


def select_watcher(settings: Settings) -> ChangeWatcher:
    path = settings.urls_file
    if settings.watch_mode == "poll":
        LOG.info("polling %s every %.0fs", path, settings.poll_refresh_seconds)
        return PollingWatcher(path, settings.poll_refresh_seconds)
    try:
        watcher = EventWatcher(path)
    except OSError as e:
        if settings.watch_mode == "events":
            raise
        LOG.warning("filesystem events unavailable (%s); polling %s every %.0fs",
                    e, path, settings.poll_refresh_seconds)
        return PollingWatcher(path, settings.poll_refresh_seconds)
    LOG.info("watching %s for filesystem events", path)
    return watcher
