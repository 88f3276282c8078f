"""Persistence layer for correlation tracking."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CorrelatorConfig, load_config
from .inmemory import InMemoryCorrelationRepository
from .repository import CorrelationRepository
from .sqlite import SQLiteCorrelationRepository

_repository_instance: CorrelationRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[CorrelatorConfig] = None
) -> CorrelationRepository:
    """Factory function to obtain a correlation repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``CORRELATOR_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CORRELATOR_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryCorrelationRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteCorrelationRepository(path, timeout=config.store_timeout)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresCorrelationRepository

        _repository_instance = PostgresCorrelationRepository(
            database_url, timeout=config.store_timeout
        )
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "CorrelationRepository",
    "InMemoryCorrelationRepository",
    "SQLiteCorrelationRepository",
    "get_repository",
]
