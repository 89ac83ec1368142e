# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ProbeResult(BaseModel):
    url: str
    reachable: bool
    error: Optional[str] = None
    elapsed_s: float = Field(default=0.0, description="Wall time spent probing")
