"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    engine,
    get_session_factory,
    init_db,
)
from .security import (
    create_access_token,
    decode_token,
    hash_fingerprint,
    verify_cron_secret,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session_factory",
    "init_db",
    "close_db",
    # Security
    "create_access_token",
    "decode_token",
    "hash_fingerprint",
    "verify_cron_secret",
]
