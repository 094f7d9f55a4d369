"""Helpers for database connection strings.

Tortoise ORM selects its backend from the URL scheme: ``sqlite://`` for the
default local database and ``asyncpg://`` for PostgreSQL. Operators tend to
paste SQLAlchemy-style or plain PostgreSQL URLs, so they are normalized here.
"""

from __future__ import annotations


def to_postgres_dsn(url: str) -> str:
    """Strip a ``+driver`` suffix and map ``asyncpg://`` back to ``postgresql://``."""

    if url.startswith("postgresql+"):
        return "postgresql://" + url.split("://", 1)[1]
    if url.startswith("asyncpg://"):
        return "postgresql://" + url[len("asyncpg://") :]
    return url


def to_tortoise_url(url: str) -> str:
    """Convert a database URL into the scheme understood by Tortoise.

    PostgreSQL variants become ``asyncpg://``; anything else (``sqlite://``,
    ``mysql://``) is passed through untouched.
    """

    url = to_postgres_dsn(url)
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url
