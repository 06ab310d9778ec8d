"""Database reachability check."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from deckwatch.lib.logging_config import get_logger
from deckwatch.models.config import DatabaseCheckConfig
from deckwatch.models.deployment import DatabaseHealth, DatabaseStatus

logger = get_logger(__name__)


async def check_database(config: DatabaseCheckConfig) -> DatabaseHealth:
    """Open and close a TCP connection to the configured database.

    Returns ``unknown`` when no host is configured.
    """
    now = datetime.now(timezone.utc)
    if config.host is None:
        return DatabaseHealth(status=DatabaseStatus.UNKNOWN, last_check=now)

    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(config.host, config.port), config.timeout
        )
    except (OSError, asyncio.TimeoutError) as exc:
        error = str(exc) or type(exc).__name__
        logger.debug(f"Database {config.host}:{config.port} unreachable: {error}")
        return DatabaseHealth(status=DatabaseStatus.ERROR, last_check=now, error=error)

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return DatabaseHealth(status=DatabaseStatus.CONNECTED, last_check=now)
