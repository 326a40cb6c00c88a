"""Utilities for the Trading Arena."""

from arena.utils.logging_config import setup_logging

__all__ = ["setup_logging"]
