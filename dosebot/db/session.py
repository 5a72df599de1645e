# dosebot/db/session.py
from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


def make_engine(url: str) -> AsyncEngine:
    """
    Build the AsyncEngine for a SQLAlchemy async URL.
    Production default is 'mysql+aiomysql' (utf8mb4 in the URL keeps CJK labels
    intact); tests use 'sqlite+aiosqlite'.
    """
    kwargs = {"pool_pre_ping": True, "echo": False}
    if url.startswith("mysql"):
        kwargs.update(pool_size=5, max_overflow=0)
    return create_async_engine(url, **kwargs)
