# SPDX-License-Identifier: Apache-2.0
"""Tests for source list change watchers."""
from __future__ import annotations

import os
import threading
import time

import pytest

from jumbotron.config import Settings
from jumbotron.watcher import EventWatcher, PollingWatcher, select_watcher


def _rewrite_later(path, text, delay=0.3):
    def _w():
        time.sleep(delay)
        path.write_text(text, encoding="utf-8")

    t = threading.Thread(target=_w, daemon=True)
    t.start()
    return t


@pytest.fixture
def urls(tmp_path):
    p = tmp_path / "rtmp_urls"
    p.write_text("rtmp://a\n", encoding="utf-8")
    return p


# ── Polling ──────────────────────────────────────────────────────────────

class TestPolling:
    def test_detects_content_change(self, urls):
        w = PollingWatcher(urls, poll_interval=0.05)
        w.arm()
        _rewrite_later(urls, "rtmp://a\nrtmp://b\n", delay=0.1)
        assert w.wait(threading.Event(), timeout=5.0) is True

    def test_unchanged_times_out(self, urls):
        w = PollingWatcher(urls, poll_interval=0.05)
        w.arm()
        urls.write_text("rtmp://a\n", encoding="utf-8")
        assert w.wait(threading.Event(), timeout=0.3) is False

    def test_missing_file_is_not_a_change(self, urls):
        w = PollingWatcher(urls, poll_interval=0.05)
        w.arm()
        urls.unlink()
        assert w.wait(threading.Event(), timeout=0.3) is False

    def test_recreated_file_is_a_change(self, tmp_path):
        p = tmp_path / "rtmp_urls"
        w = PollingWatcher(p, poll_interval=0.05)
        w.arm()
        p.write_text("rtmp://a\n", encoding="utf-8")
        assert w.wait(threading.Event(), timeout=2.0) is True

    def test_shutdown_interrupts(self, urls):
        w = PollingWatcher(urls, poll_interval=10.0)
        w.arm()
        shutdown = threading.Event()
        threading.Timer(0.1, shutdown.set).start()
        started = time.monotonic()
        assert w.wait(shutdown) is False
        assert time.monotonic() - started < 2.0

    def test_poll_is_rate_limited(self, urls):
        w = PollingWatcher(urls, poll_interval=60.0)
        w.arm()
        urls.write_text("rtmp://z\n", encoding="utf-8")
        assert w.poll() is False


# ── Events ───────────────────────────────────────────────────────────────

class TestEvents:
    def test_detects_write(self, urls):
        w = EventWatcher(urls)
        try:
            w.arm()
            _rewrite_later(urls, "rtmp://b\n")
            assert w.wait(threading.Event(), timeout=5.0) is True
        finally:
            w.close()

    def test_detects_atomic_replace(self, urls):
        w = EventWatcher(urls)
        try:
            w.arm()
            tmp = urls.with_name("rtmp_urls.new")
            tmp.write_text("rtmp://c\n", encoding="utf-8")
            os.replace(tmp, urls)
            assert w.wait(threading.Event(), timeout=5.0) is True
        finally:
            w.close()

    def test_ignores_sibling_files(self, urls):
        w = EventWatcher(urls)
        try:
            w.arm()
            (urls.parent / "other.txt").write_text("x", encoding="utf-8")
            assert w.wait(threading.Event(), timeout=0.5) is False
        finally:
            w.close()

    def test_arm_discards_earlier_events(self, urls):
        w = EventWatcher(urls)
        try:
            urls.write_text("rtmp://b\n", encoding="utf-8")
            time.sleep(0.5)
            w.arm()
            assert w.poll() is False
        finally:
            w.close()


# ── Selection ────────────────────────────────────────────────────────────

class TestSelect:
    def test_poll_mode(self, urls):
        w = select_watcher(Settings(urls_file=urls, watch_mode="poll", poll_refresh_seconds=3))
        assert isinstance(w, PollingWatcher)
        assert w.poll_interval == 3

    def test_auto_prefers_events(self, urls):
        w = select_watcher(Settings(urls_file=urls, watch_mode="auto"))
        try:
            assert isinstance(w, EventWatcher)
        finally:
            w.close()

    def test_auto_falls_back_when_directory_missing(self, tmp_path):
        w = select_watcher(Settings(urls_file=tmp_path / "missing" / "urls", watch_mode="auto"))
        assert isinstance(w, PollingWatcher)

    def test_events_mode_fails_when_unavailable(self, tmp_path):
        with pytest.raises(OSError):
            select_watcher(Settings(urls_file=tmp_path / "missing" / "urls", watch_mode="events"))
