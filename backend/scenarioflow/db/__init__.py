"""Database package."""

from .engine import (
    Base,
    build_engine,
    get_db,
    init_db,
    dispose_db,
    engine,
    async_session_factory,
)
from . import models  # noqa: F401  (registers tables on Base.metadata)

__all__ = [
    "Base",
    "build_engine",
    "get_db",
    "init_db",
    "dispose_db",
    "engine",
    "async_session_factory",
]
