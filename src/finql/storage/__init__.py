"""Persistence layer: repository contract plus SQLite and PostgreSQL backends."""

from __future__ import annotations

from finql.core.config import StorageConfig
from finql.core.exceptions import StorageError
from finql.core.models import StorageBackend
from finql.storage.base import Repository, RepositorySession
from finql.storage.sqlite import SqliteRepository, SqliteSession


async def create_repository(config: StorageConfig) -> Repository:
    """Create and initialize a storage backend based on configuration."""
    if config.backend == StorageBackend.SQLITE:
        repo: Repository = SqliteRepository(config)
    elif config.backend == StorageBackend.POSTGRESQL:
        from finql.storage.postgres import PostgresRepository

        repo = PostgresRepository(config)
    else:
        raise StorageError(
            f"Unsupported storage backend: {config.backend}",
            context={"operation": "create_repository", "backend": str(config.backend)},
        )
    await repo.initialize()
    return repo


__all__ = [
    "Repository",
    "RepositorySession",
    "SqliteRepository",
    "SqliteSession",
    "create_repository",
]
