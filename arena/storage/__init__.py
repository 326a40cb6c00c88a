"""Storage module for the Trading Arena."""

from arena.storage.database import Database, mode_from_stored, mode_to_stored

__all__ = [
    "Database",
    "mode_from_stored",
    "mode_to_stored",
]
