"""Utility helpers for the :mod:`lockstep` package."""

from __future__ import annotations

from .path import is_within, legible_path, normalise_workspace_root

__all__ = ["is_within", "legible_path", "normalise_workspace_root"]
