"""
Media record persistence.

The media library normally belongs to the host application. The
in-memory store backs local development, the bundled API and tests.
"""

from .memory import InMemoryMediaStore, RecordNotFoundError

__all__ = ["InMemoryMediaStore", "RecordNotFoundError"]
