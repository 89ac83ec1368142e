# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="JUMBOTRON_", case_sensitive=False)

    # Sources
    urls_file: Path = Field(default=Path("/etc/rtmp_urls"), description="One source URL per line")
    probe_timeout_s: float = Field(default=5.0, gt=0)
    ffprobe_bin: str = "ffprobe"

    # Output
    hls_dir: Path = Path("/hls")
    hls_time: int = Field(default=2, gt=0, description="Segment duration; keep <= switch_every")
    hls_list_size: int = Field(default=450, ge=0)

    # Switching
    switch_every: int = Field(default=5, gt=0, description="Seconds between source switches")
    sendcmd_duration: int = Field(default=86400, gt=0, description="Schedule horizon in seconds")
    sendcmd_file: Path = Path("/tmp/jumbotron_cmds.txt")
    seed: Optional[int] = Field(default=None, description="Seed for the switch schedule RNG")

    # Encoding
    ffmpeg_bin: str = "ffmpeg"
    ffmpeg_loglevel: str = "info"
    video_preset: str = "veryfast"
    video_crf: int = Field(default=23, ge=0, le=51)
    audio_bitrate: str = "128k"
    fps: Optional[int] = Field(default=None, gt=0, description="Fixed frame rate; aligns GOP to switches")

    # Refresh / supervision
    poll_refresh_seconds: float = Field(default=10.0, gt=0)
    no_streams_sleep: float = Field(default=5.0, gt=0)
    stop_grace_s: float = Field(default=5.0, gt=0)
    supervisor_tick_s: float = Field(default=0.5, gt=0)
    watch_mode: Literal["auto", "events", "poll"] = "auto"
    exit_restart_s: Optional[float] = Field(
        default=None, gt=0, description="Re-evaluate this long after a pipeline exit even without a change"
    )

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def probe_timeout_us(self) -> int:
        return int(self.probe_timeout_s * 1_000_000)


def load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_settings(config_path: Optional[str] = None, **overrides: Any) -> Settings:
    """Build settings from an optional YAML file plus explicit overrides.

    Overrides beat YAML values, YAML beats ``JUMBOTRON_*`` environment
    variables, and environment beats the defaults. ``None`` overrides are
    ignored so unset CLI flags fall through.
    """
    data: Dict[str, Any] = load_yaml(config_path) if config_path else {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_path}: settings file must be a YAML mapping")
    data.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**data)
