"""Server configuration for feed_sync.

Values come from FEED_SYNC_* environment variables and fall back to the
defaults declared on ServerConfig.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".feed_sync" / "feed_sync.db"


@dataclass
class ServerConfig:
    """Runtime settings for the server and the sync engine."""

    name: str = "feed_sync"
    log_level: str = "INFO"
    db_path: Path = DEFAULT_DB_PATH
    default_refresh_interval_minutes: int = 60
    max_concurrent_refreshes: int = 4
    http_timeout: float = 30.0
    user_agent: str = "FeedSync/1.0 (RSS Feed Reader)"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}")
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return default
    return value if value > 0 else default


def load_config() -> ServerConfig:
    """Build a ServerConfig from the environment.

    Returns:
        A fresh ServerConfig instance
    """
    defaults = ServerConfig()
    db_path = os.environ.get("FEED_SYNC_DB_PATH")

    return ServerConfig(
        name=os.environ.get("FEED_SYNC_SERVER_NAME", defaults.name),
        log_level=os.environ.get("FEED_SYNC_LOG_LEVEL", defaults.log_level).upper(),
        db_path=Path(db_path) if db_path else defaults.db_path,
        default_refresh_interval_minutes=_env_int(
            "FEED_SYNC_REFRESH_INTERVAL", defaults.default_refresh_interval_minutes
        ),
        max_concurrent_refreshes=_env_int(
            "FEED_SYNC_MAX_CONCURRENT", defaults.max_concurrent_refreshes
        ),
        http_timeout=_env_float("FEED_SYNC_HTTP_TIMEOUT", defaults.http_timeout),
        user_agent=os.environ.get("FEED_SYNC_USER_AGENT", defaults.user_agent),
    )


_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config

    if _config is None:
        _config = load_config()

    return _config
