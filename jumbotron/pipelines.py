# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .sources import SourceSet


@dataclass(frozen=True)
class PipelineSpec:
    argv: List[str]
    pretty: str
    inputs: int


@dataclass(frozen=True)
class EncodingParams:
    switch_every: int
    preset: str = "veryfast"
    crf: int = 23
    audio_bitrate: str = "128k"
    fps: Optional[int] = None
    loglevel: str = "info"

    @property
    def gop(self) -> Optional[int]:
        if self.fps is None:
            return None
        return self.fps * self.switch_every


@dataclass(frozen=True)
class HlsOutput:
    hls_dir: Path
    hls_time: int = 2
    list_size: int = 450

    @property
    def playlist(self) -> Path:
        return self.hls_dir / "index.m3u8"

    @property
    def segment_pattern(self) -> Path:
        return self.hls_dir / "segment_%05d.ts"


def _ffmpeg(argv: List[str], inputs: int) -> PipelineSpec:
    return PipelineSpec(argv=argv, pretty=shlex.join(argv), inputs=inputs)


def build_filtergraph(n: int, schedule_path: Path) -> str:
    # sendcmd feeds the video chain, asendcmd the audio chain; each sits right
    # before its select filter. setpts/asetpts restamp so PTS stay monotonic
    # across a cut.
    if n < 1:
        raise ValueError("filter graph needs at least one input")
    v_inputs = "".join(f"[{i}:v]" for i in range(n))
    a_inputs = "".join(f"[{i}:a]" for i in range(n))
    return (
        f"{v_inputs}sendcmd=f={schedule_path},"
        f"streamselect=inputs={n}:map=0,setpts=N/FRAME_RATE/TB[v];"
        f"{a_inputs}asendcmd=f={schedule_path},"
        f"astreamselect=inputs={n}:map=0,asetpts=N/SR/TB[a]"
    )


def _input_args(url: str, rw_timeout_us: int) -> List[str]:
    return [
        "-thread_queue_size", "1024",
        "-rw_timeout", str(rw_timeout_us),
        "-fflags", "+genpts",
        "-i", url,
    ]


def build_jumbotron_pipeline(
    sources: SourceSet,
    schedule_path: Path,
    enc: EncodingParams,
    out: HlsOutput,
    *,
    ffmpeg: str = "ffmpeg",
    rw_timeout_us: int = 5_000_000,
) -> PipelineSpec:
    n = len(sources)
    if n < 1:
        raise ValueError("pipeline needs at least one source")

    argv = [ffmpeg, "-hide_banner", "-loglevel", enc.loglevel]
    for url in sources:
        argv += _input_args(url, rw_timeout_us)

    argv += [
        "-filter_complex", build_filtergraph(n, schedule_path),
        "-map", "[v]", "-map", "[a]",
        "-c:v", "libx264", "-preset", enc.preset, "-crf", str(enc.crf), "-pix_fmt", "yuv420p",
        "-tune", "zerolatency",
    ]
    gop = enc.gop
    if gop is not None:
        argv += ["-r", str(enc.fps), "-g", str(gop), "-keyint_min", str(gop)]

    # A cut mid-GOP corrupts the picture, so keyframes are forced on every
    # switch boundary regardless of GOP alignment.
    argv += [
        "-sc_threshold", "0",
        "-force_key_frames", f"expr:gte(t,n_forced*{enc.switch_every})",
        "-c:a", "aac", "-b:a", enc.audio_bitrate,
        "-f", "hls",
        "-hls_time", str(out.hls_time),
        "-hls_list_size", str(out.list_size),
        "-hls_flags", "delete_segments+append_list+temp_file",
        "-hls_segment_type", "mpegts",
        "-hls_segment_filename", str(out.segment_pattern),
        str(out.playlist),
    ]
    return _ffmpeg(argv, inputs=n)
