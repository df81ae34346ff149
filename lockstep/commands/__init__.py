"""Command implementations for the :mod:`lockstep` CLI."""

from __future__ import annotations

from . import bump

__all__ = ["bump"]
