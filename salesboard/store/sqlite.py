import logging
import os
import sqlite3

from .base import BaseStore

logger = logging.getLogger(__name__)


class SqliteStore(BaseStore):
    """
    Store backed by a local SQLite file.
    """

    name = "SQLite"
    database_error = sqlite3.Error
    column_types = {
        "primary_key": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "date_type": "TEXT",
        "float_type": "REAL",
        "timestamp_type": "TEXT",
    }

    @property
    def path(self) -> str:
        return self.config.get("path", "salesboard.db")

    def connect(self):
        """
        Opens the SQLite database file, creating its directory when needed.
        """
        try:
            directory = os.path.dirname(os.path.abspath(self.path))
            os.makedirs(directory, exist_ok=True)
            self.connection = sqlite3.connect(self.path)
            logger.info(f"Successfully connected to SQLite database: {self.path}")
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Error connecting to SQLite: {e}")
            raise ConnectionError(f"Could not connect to SQLite: {e}")

    def disconnect(self):
        """
        Closes the database connection.
        """
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info(f"Disconnected from SQLite database: {self.path}")

    def _insert(self, cursor, query: str, params: tuple) -> int:
        self._execute(cursor, query, params)
        return cursor.lastrowid
