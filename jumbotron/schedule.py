# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import math
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

VIDEO_TARGET = "streamselect"
AUDIO_TARGET = "astreamselect"


@dataclass(frozen=True)
class SwitchEntry:
    offset: int
    index: int


@dataclass(frozen=True)
class SwitchSchedule:
    sources: int
    interval: int
    video: Tuple[SwitchEntry, ...]
    audio: Tuple[SwitchEntry, ...]

    def __len__(self) -> int:
        return len(self.video)

    def to_sendcmd(self) -> str:
        # <time> <target> <command> <arg>, the minimal sendcmd syntax.
        lines: List[str] = []
        for v, a in zip(self.video, self.audio):
            lines.append(f"{v.offset}.0 {VIDEO_TARGET} map {v.index}")
            lines.append(f"{a.offset}.0 {AUDIO_TARGET} map {a.index}")
        return "\n".join(lines) + "\n"

    def head(self, n: int = 6) -> List[str]:
        return self.to_sendcmd().splitlines()[:n]


def entry_count(interval: int, horizon: int) -> int:
    return math.ceil(horizon / interval) + 1


def generate_schedule(
    n: int,
    interval: int,
    horizon: int,
    rng: Optional[random.Random] = None,
) -> SwitchSchedule:
    """Pick a source index for every switch boundary from 0 through the horizon.

    With more than one source the same index never appears twice in a row.
    Audio follows video at every boundary.
    """
    if n < 1:
        raise ValueError("schedule needs at least one source")
    if interval <= 0 or horizon < 0:
        raise ValueError("interval must be > 0 and horizon >= 0")
    rng = rng or random.Random()

    video: List[SwitchEntry] = []
    last = -1
    for i in range(entry_count(interval, horizon)):
        idx = 0
        if n > 1:
            idx = rng.randrange(n)
            while idx == last:
                idx = rng.randrange(n)
        last = idx
        video.append(SwitchEntry(offset=i * interval, index=idx))

    entries = tuple(video)
    return SwitchSchedule(sources=n, interval=interval, video=entries, audio=entries)


def write_schedule(schedule: SwitchSchedule, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(schedule.to_sendcmd(), encoding="utf-8")
    os.replace(tmp, path)
