"""Maintenance background tasks for cleanup operations."""

import logging
from typing import Any

from gtovantage.config import settings
from gtovantage.services.token_store import StorageUnavailableError
from gtovantage.services.verification import verification_service

logger = logging.getLogger(__name__)

# Timeout for maintenance tasks (10 minutes)
MAINTENANCE_TIMEOUT_SECONDS = 10 * 60

# Sweep at the top of every hour
SWEEP_CRON = "0 * * * *"


async def sweep_verification_tokens(
    ctx: dict[str, Any],
    retention_days: int | None = None,
    dry_run: bool = False,
) -> dict[str, Any]:
    """Delete verification tokens that were used or expired long enough ago.

    Args:
        ctx: SAQ context
        retention_days: Keep used/expired tokens this many days (defaults to settings)
        dry_run: If True, only report what would be deleted

    Returns:
        Dict with sweep results
    """
    if retention_days is None:
        retention_days = settings.verification_token_retention_days

    service = ctx.get("verification_service") or verification_service

    try:
        count = await service.sweep(retention_days=retention_days, dry_run=dry_run)
    except StorageUnavailableError as e:
        error = f"Token sweep failed: {e}"
        logger.exception(error)
        return {"success": False, "error": error}

    return {
        "success": True,
        "dry_run": dry_run,
        "retention_days": retention_days,
        "tokens_deleted": 0 if dry_run else count,
        "tokens_would_delete": count,
    }


# Set SAQ job timeouts
sweep_verification_tokens.timeout = MAINTENANCE_TIMEOUT_SECONDS  # type: ignore[attr-defined]
