import logging

import psycopg2

from .base import BaseStore

logger = logging.getLogger(__name__)


class PostgresStore(BaseStore):
    """
    Store backed by a PostgreSQL database.
    """

    name = "PostgreSQL"
    database_error = psycopg2.Error
    column_types = {
        "primary_key": "SERIAL PRIMARY KEY",
        "date_type": "DATE",
        "float_type": "DOUBLE PRECISION",
        "timestamp_type": "TIMESTAMP",
    }

    def connect(self):
        """
        Establishes a connection to the PostgreSQL database, from a DSN when one
        is configured and from the individual parameters otherwise.
        """
        try:
            if self.config.get("dsn"):
                self.connection = psycopg2.connect(self.config["dsn"])
            else:
                self.connection = psycopg2.connect(
                    host=self.config.get("host"),
                    port=self.config.get("port", 5432),
                    user=self.config.get("username"),
                    password=self.config.get("password"),
                    dbname=self.config.get("database"),
                )
            logger.info(
                f"Successfully connected to PostgreSQL database: {self.config.get('database')} at {self.config.get('host')}")
        except psycopg2.Error as e:
            logger.error(f"Error connecting to PostgreSQL: {e}")
            raise ConnectionError(f"Could not connect to PostgreSQL: {e}")

    def disconnect(self):
        """
        Closes the database connection.
        """
        if self.connection:
            self.connection.close()
            self.connection = None
            logger.info(
                f"Disconnected from PostgreSQL database: {self.config.get('database')} at {self.config.get('host')}")

    def _adapt_sql(self, query: str) -> str:
        # psycopg2 uses the pyformat paramstyle
        return query.replace("?", "%s")

    def _insert(self, cursor, query: str, params: tuple) -> int:
        self._execute(cursor, query + " RETURNING id", params)
        return cursor.fetchone()[0]
