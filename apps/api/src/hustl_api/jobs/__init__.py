"""Recurring job entrypoints for points maintenance."""

__all__ = ["points"]
