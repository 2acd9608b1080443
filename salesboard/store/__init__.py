from .base import BaseStore, RecordNotFoundError
from .sqlite import SqliteStore
from .postgres import PostgresStore

import logging

logger = logging.getLogger(__name__)

_STORE_MAP = {
    "sqlite": SqliteStore,
    "postgres": PostgresStore,
}


def get_store(store_type: str, config: dict) -> BaseStore:
    """
    Factory function to get a store instance.

    Args:
        store_type (str): The database backend (e.g., "sqlite", "postgres").
        config (dict): The configuration dictionary for the store.

    Returns:
        BaseStore: An instance of the appropriate store.

    Raises:
        ValueError: If the store_type is not supported.
    """
    store_class = _STORE_MAP.get(store_type.lower())
    if not store_class:
        logger.error(f"Unsupported database backend: {store_type}")
        raise ValueError(f"Unsupported database backend: {store_type}. Supported types are: {list(_STORE_MAP.keys())}")

    logger.debug(f"Creating store of type: {store_type}")
    return store_class(config)


__all__ = [
    "BaseStore",
    "RecordNotFoundError",
    "SqliteStore",
    "PostgresStore",
    "get_store",
]
