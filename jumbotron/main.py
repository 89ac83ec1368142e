#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import argparse
import json
import logging
import random
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .config import Settings, load_settings
from .errors import ChildSpawnFailure, ConfigUnavailable, NoValidSources
from .loop import ControlLoop, plan_pipeline
from .probe import FfprobeProber
from .sources import SourceValidator, collect_sources

LOG = logging.getLogger("jumbotron.main")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Jumbotron: rotate live sources into one HLS output")
    ap.add_argument("--config", default=None, help="optional YAML settings file")
    ap.add_argument("--urls-file", default=None, help="source list, one URL per line")
    ap.add_argument("--hls-dir", default=None)
    ap.add_argument("--switch-every", type=int, default=None, help="seconds between switches")
    ap.add_argument("--fps", type=int, default=None, help="fixed frame rate; aligns GOP to switches")
    ap.add_argument("--watch-mode", choices=["auto", "events", "poll"], default=None)
    ap.add_argument("--seed", type=int, default=None, help="seed for the switch schedule")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="command")
    sub.add_parser("supervise", help="run the control loop (default)")
    sub.add_parser("once", help="run one pipeline and exit with its exit code")
    sub.add_parser("plan", help="validate sources and print the pipeline without running it")
    ap.set_defaults(command="supervise")
    return ap


def plan(settings: Settings) -> int:
    validator = SourceValidator(FfprobeProber(ffprobe=settings.ffprobe_bin, timeout_s=settings.probe_timeout_s))
    try:
        sources = collect_sources(settings.urls_file, validator)
    except (ConfigUnavailable, NoValidSources) as e:
        print(json.dumps({"valid": False, "errors": [str(e)]}, indent=2))
        return 1
    schedule, spec = plan_pipeline(settings, sources, random.Random(settings.seed))
    print(json.dumps({
        "valid": True,
        "sources": list(sources),
        "fingerprint": sources.fingerprint,
        "switches": len(schedule),
        "schedule_head": schedule.head(),
        "command": spec.pretty,
    }, indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    try:
        settings = load_settings(
            args.config,
            urls_file=args.urls_file,
            hls_dir=args.hls_dir,
            switch_every=args.switch_every,
            fps=args.fps,
            watch_mode=args.watch_mode,
            seed=args.seed,
            log_level=args.log_level,
        )
    except (ValidationError, ValueError, OSError, yaml.YAMLError) as e:
        _setup_logging(args.log_level or "INFO")
        LOG.error("invalid configuration: %s", e)
        return 2

    _setup_logging(settings.log_level)

    if args.command == "plan":
        return plan(settings)

    try:
        loop = ControlLoop(settings)
    except OSError as e:
        LOG.critical("cannot watch %s: %s", settings.urls_file, e)
        return 2
    try:
        loop.install_signal_handlers()
    except (ValueError, OSError) as e:
        LOG.critical("cannot install signal handlers: %s", e)
        loop.cleanup()
        return 2

    if args.command == "once":
        try:
            return loop.run_once()
        except ChildSpawnFailure as e:
            LOG.error("%s", e)
            return 1
    return loop.run()


if __name__ == "__main__":
    raise SystemExit(main())
