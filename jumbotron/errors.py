# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations


class JumbotronError(Exception):
    """Base class for supervisor errors."""


class ConfigUnavailable(JumbotronError):
    """Source list file is missing or unreadable. Retryable."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        self.reason = reason
        msg = f"Cannot read {path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class NoValidSources(JumbotronError):
    """Every candidate failed probing, or the list was empty. Retryable."""


class ProbeToolMissing(JumbotronError):
    """The probe executable could not be found."""


class ChildSpawnFailure(JumbotronError):
    """The pipeline process could not be started."""
