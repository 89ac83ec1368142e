# SPDX-License-Identifier: Apache-2.0
"""
Control loop for the jumbotron supervisor.

The loop is a small state machine driven by ``ControlLoop.step``:

  COLLECTING  read + validate the source list, retrying on a fixed delay
  COMPARING   fingerprint vs. the set that last launched a pipeline
  IDLE_WAIT   unchanged set; wait for a file change, pipeline untouched
  STARTING    regenerate schedule + pipeline and spawn ffmpeg
  RUNNING     wait for ffmpeg to exit or the source list to change
  EXITED      ffmpeg ended; wait for a file change before re-collecting

State lives in an immutable ``LoopContext`` handed from step to step.
Termination signals set an event that every wait observes; ``run`` then
forwards the signal to ffmpeg and returns 0.
"""
from __future__ import annotations

import enum
import logging
import random
import signal
import threading
from dataclasses import dataclass, replace
from typing import Any, Optional, Tuple

from .config import Settings
from .errors import ChildSpawnFailure, ConfigUnavailable, NoValidSources
from .pipelines import EncodingParams, HlsOutput, PipelineSpec, build_jumbotron_pipeline
from .probe import FfprobeProber
from .process import ExitStatus, ProcessSupervisor
from .schedule import SwitchSchedule, generate_schedule, write_schedule
from .sources import SourceSet, SourceValidator, collect_sources
from .watcher import ChangeWatcher, select_watcher

LOG = logging.getLogger("jumbotron.loop")


class LoopState(enum.Enum):
    COLLECTING = "collecting"
    COMPARING = "comparing"
    IDLE_WAIT = "idle_wait"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass(frozen=True)
class LoopContext:
    state: LoopState = LoopState.COLLECTING
    sources: Optional[SourceSet] = None
    last_fingerprint: Optional[str] = None
    spawns: int = 0
    last_exit: Optional[ExitStatus] = None


def encoding_params(settings: Settings) -> EncodingParams:
    return EncodingParams(
        switch_every=settings.switch_every,
        preset=settings.video_preset,
        crf=settings.video_crf,
        audio_bitrate=settings.audio_bitrate,
        fps=settings.fps,
        loglevel=settings.ffmpeg_loglevel,
    )


def hls_output(settings: Settings) -> HlsOutput:
    return HlsOutput(hls_dir=settings.hls_dir, hls_time=settings.hls_time, list_size=settings.hls_list_size)


def plan_pipeline(
    settings: Settings, sources: SourceSet, rng: random.Random
) -> Tuple[SwitchSchedule, PipelineSpec]:
    schedule = generate_schedule(len(sources), settings.switch_every, settings.sendcmd_duration, rng)
    spec = build_jumbotron_pipeline(
        sources,
        settings.sendcmd_file,
        encoding_params(settings),
        hls_output(settings),
        ffmpeg=settings.ffmpeg_bin,
        rw_timeout_us=settings.probe_timeout_us,
    )
    return schedule, spec


class ControlLoop:
    def __init__(
        self,
        settings: Settings,
        *,
        validator: Optional[SourceValidator] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        watcher: Optional[ChangeWatcher] = None,
        rng: Optional[random.Random] = None,
        shutdown: Optional[threading.Event] = None,
    ) -> None:
        self.settings = settings
        self.shutdown = shutdown or threading.Event()
        self.validator = validator or SourceValidator(
            FfprobeProber(
                ffprobe=settings.ffprobe_bin,
                timeout_s=settings.probe_timeout_s,
                shutdown=self.shutdown,
            )
        )
        self.supervisor = supervisor or ProcessSupervisor(
            grace_s=settings.stop_grace_s, tick_s=settings.supervisor_tick_s
        )
        self.watcher = watcher or select_watcher(settings)
        self.rng = rng or random.Random(settings.seed)
        self.signum: int = signal.SIGTERM

    # ── Collection ──────────────────────────────────────────────────────

    def collect(self) -> Optional[SourceSet]:
        """Block until at least one valid source exists. None on shutdown."""
        delay = self.settings.no_streams_sleep
        while not self.shutdown.is_set():
            try:
                sources = collect_sources(self.settings.urls_file, self.validator, self.shutdown)
            except (ConfigUnavailable, NoValidSources) as e:
                if self.shutdown.is_set():
                    break
                LOG.error("%s; sleeping %.0fs...", e, delay)
                self.shutdown.wait(delay)
                continue
            if self.shutdown.is_set():
                break
            return sources
        return None

    # ── States ──────────────────────────────────────────────────────────

    def _collecting(self, ctx: LoopContext) -> LoopContext:
        # Arm first so edits made while probing still wake the next wait.
        self.watcher.arm()
        sources = self.collect()
        if sources is None:
            return ctx
        return replace(ctx, state=LoopState.COMPARING, sources=sources)

    def _comparing(self, ctx: LoopContext) -> LoopContext:
        if ctx.sources is None:
            raise RuntimeError("no source set collected")
        current = ctx.sources.fingerprint
        if current == ctx.last_fingerprint and self.supervisor.running:
            LOG.info("valid source set unchanged; not restarting. Waiting for change...")
            return replace(ctx, state=LoopState.IDLE_WAIT)
        return replace(ctx, state=LoopState.STARTING)

    def _starting(self, ctx: LoopContext) -> LoopContext:
        sources = ctx.sources
        if sources is None:
            raise RuntimeError("no source set collected")
        if self.supervisor.running:
            LOG.info("valid source set changed; restarting pipeline")
            self.supervisor.terminate()

        schedule, spec = plan_pipeline(self.settings, sources, self.rng)
        try:
            write_schedule(schedule, self.settings.sendcmd_file)
            self.settings.hls_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ChildSpawnFailure(f"cannot prepare pipeline output: {e}") from e

        LOG.info("using %d input(s):\n%s", len(sources), "\n".join(f"  - {u}" for u in sources))
        LOG.info("schedule %s (%d switches):\n%s", self.settings.sendcmd_file, len(schedule),
                 "\n".join(schedule.head()))

        self.supervisor.spawn(spec)
        return replace(
            ctx,
            state=LoopState.RUNNING,
            last_fingerprint=sources.fingerprint,
            spawns=ctx.spawns + 1,
            last_exit=None,
        )

    def _waiting(self, ctx: LoopContext) -> LoopContext:
        # Shared by RUNNING and IDLE_WAIT: both end on exit or file change.
        status = self.supervisor.wait(self.shutdown, interrupt=self.watcher.poll)
        if status is not None:
            return replace(ctx, state=LoopState.EXITED, last_exit=status)
        if self.shutdown.is_set():
            return ctx
        LOG.info("%s changed; re-validating sources", self.settings.urls_file)
        return replace(ctx, state=LoopState.COLLECTING)

    def _exited(self, ctx: LoopContext) -> LoopContext:
        LOG.info("ffmpeg exited; waiting for %s to change before restart...", self.settings.urls_file)
        self.watcher.wait(self.shutdown, timeout=self.settings.exit_restart_s)
        if self.shutdown.is_set():
            return ctx
        return replace(ctx, state=LoopState.COLLECTING)

    def step(self, ctx: LoopContext) -> LoopContext:
        handler = {
            LoopState.COLLECTING: self._collecting,
            LoopState.COMPARING: self._comparing,
            LoopState.IDLE_WAIT: self._waiting,
            LoopState.STARTING: self._starting,
            LoopState.RUNNING: self._waiting,
            LoopState.EXITED: self._exited,
        }[ctx.state]
        return handler(ctx)

    # ── Lifecycle ───────────────────────────────────────────────────────

    def _handle_sig(self, signum: int, _frame: Any) -> None:
        LOG.info("received signal %d, shutting down...", signum)
        self.signum = signum
        self.shutdown.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_sig)
        signal.signal(signal.SIGINT, self._handle_sig)

    def cleanup(self) -> Optional[ExitStatus]:
        status = self.supervisor.terminate(self.signum)
        try:
            self.settings.sendcmd_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            LOG.warning("cannot remove %s: %s", self.settings.sendcmd_file, e)
        self.watcher.close()
        return status

    def run(self) -> int:
        LOG.info("watching %s for changes...", self.settings.urls_file)
        ctx = LoopContext()
        try:
            while not self.shutdown.is_set():
                ctx = self.step(ctx)
        except ChildSpawnFailure as e:
            LOG.error("%s", e)
            return 1
        finally:
            self.cleanup()
        return 0

    def run_once(self) -> int:
        """Direct-run mode: one pipeline, its exit code passed through."""
        self.watcher.arm()
        sources = self.collect()
        if sources is None:
            self.cleanup()
            return 0
        try:
            self._starting(LoopContext(sources=sources))
            status = self.supervisor.wait(self.shutdown)
        finally:
            self.cleanup()
        if status is None:
            return 0
        return status.shell_code
