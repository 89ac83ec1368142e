# SPDX-License-Identifier: Apache-2.0
"""Jumbotron: rotate live sources into one continuous HLS output."""

__version__ = "0.1.0"
