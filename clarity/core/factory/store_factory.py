"""
Factory for creating note stores.
"""

from clarity.config import StorageConfig
from clarity.core.store.base import NoteStore
from clarity.core.store.sqlite_store import SQLiteNoteStore
from clarity.utils.exceptions import ConfigurationError


class StoreFactory:
    """Factory for creating note stores from configuration."""

    @staticmethod
    def create(config: StorageConfig) -> NoteStore:
        """
        Create note store from configuration.

        Args:
            config: Storage configuration

        Returns:
            Note store instance (not yet initialized)

        Raises:
            ConfigurationError: If backend is not supported
        """
        if config.backend == "sqlite":
            return SQLiteNoteStore(db_path=config.db_path)
        elif config.backend == "memory":
            return SQLiteNoteStore(db_path=":memory:")
        else:
            raise ConfigurationError(
                f"Unsupported storage backend: {config.backend}", {"backend": config.backend}
            )
