"""Temporal store package."""

from .store import TemporalStore

__all__ = ["TemporalStore"]
