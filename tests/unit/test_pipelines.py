# SPDX-License-Identifier: Apache-2.0
"""Tests for the ffmpeg pipeline builder."""
from __future__ import annotations

import shlex
from pathlib import Path

import pytest

from jumbotron.pipelines import (
    EncodingParams,
    HlsOutput,
    build_filtergraph,
    build_jumbotron_pipeline,
)
from jumbotron.sources import SourceSet

SCHEDULE = Path("/tmp/jumbotron_cmds.txt")


def _arg(argv, flag):
    return argv[argv.index(flag) + 1]


def _build(n, **enc):
    sources = SourceSet(tuple(f"rtmp://host/live/{i}" for i in range(n)))
    return build_jumbotron_pipeline(
        sources,
        SCHEDULE,
        EncodingParams(switch_every=enc.pop("switch_every", 5), **enc),
        HlsOutput(hls_dir=Path("/hls")),
    )


class TestFiltergraph:
    def test_two_inputs(self):
        assert build_filtergraph(2, SCHEDULE) == (
            "[0:v][1:v]sendcmd=f=/tmp/jumbotron_cmds.txt,"
            "streamselect=inputs=2:map=0,setpts=N/FRAME_RATE/TB[v];"
            "[0:a][1:a]asendcmd=f=/tmp/jumbotron_cmds.txt,"
            "astreamselect=inputs=2:map=0,asetpts=N/SR/TB[a]"
        )

    def test_zero_inputs_rejected(self):
        with pytest.raises(ValueError):
            build_filtergraph(0, SCHEDULE)


class TestPipeline:
    @pytest.mark.parametrize("n", [1, 2, 5])
    def test_input_arity(self, n):
        spec = _build(n)
        assert spec.inputs == n
        assert spec.argv.count("-i") == n
        assert f"streamselect=inputs={n}:" in _arg(spec.argv, "-filter_complex")
        assert f"astreamselect=inputs={n}:" in _arg(spec.argv, "-filter_complex")

    def test_inputs_in_source_order(self):
        spec = _build(3)
        urls = [spec.argv[i + 1] for i, a in enumerate(spec.argv) if a == "-i"]
        assert urls == ["rtmp://host/live/0", "rtmp://host/live/1", "rtmp://host/live/2"]

    def test_input_options(self):
        spec = _build(1)
        i = spec.argv.index("-i")
        assert spec.argv[i - 6:i] == ["-thread_queue_size", "1024", "-rw_timeout", "5000000", "-fflags", "+genpts"]

    def test_keyframes_forced_on_switch(self):
        spec = _build(2, switch_every=7)
        assert _arg(spec.argv, "-force_key_frames") == "expr:gte(t,n_forced*7)"
        assert _arg(spec.argv, "-sc_threshold") == "0"

    def test_no_gop_without_fps(self):
        spec = _build(2)
        assert "-g" not in spec.argv
        assert "-r" not in spec.argv

    def test_gop_aligned_with_fps(self):
        spec = _build(2, fps=30, switch_every=5)
        assert _arg(spec.argv, "-r") == "30"
        assert _arg(spec.argv, "-g") == "150"
        assert _arg(spec.argv, "-keyint_min") == "150"

    def test_encoding_params(self):
        spec = _build(2, preset="fast", crf=20, audio_bitrate="96k", loglevel="warning")
        assert _arg(spec.argv, "-preset") == "fast"
        assert _arg(spec.argv, "-crf") == "20"
        assert _arg(spec.argv, "-b:a") == "96k"
        assert _arg(spec.argv, "-loglevel") == "warning"

    def test_hls_output(self):
        spec = _build(2)
        assert _arg(spec.argv, "-f") == "hls"
        assert _arg(spec.argv, "-hls_time") == "2"
        assert _arg(spec.argv, "-hls_list_size") == "450"
        assert _arg(spec.argv, "-hls_flags") == "delete_segments+append_list+temp_file"
        assert _arg(spec.argv, "-hls_segment_filename") == "/hls/segment_%05d.ts"
        assert spec.argv[-1] == "/hls/index.m3u8"

    def test_pretty_round_trips(self):
        spec = _build(2)
        assert shlex.split(spec.pretty) == spec.argv

    def test_empty_source_set_rejected(self):
        with pytest.raises(ValueError):
            _build(0)
