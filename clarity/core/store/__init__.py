"""
Note persistence layer.

Supported backends:
- SQLite (aiosqlite), file-backed or in-memory
"""

from clarity.core.store.base import ExtractionWrite, ExtractionWriteResult, NoteStore
from clarity.core.store.sqlite_store import SQLiteNoteStore

__all__ = [
    "NoteStore",
    "SQLiteNoteStore",
    "ExtractionWrite",
    "ExtractionWriteResult",
]
