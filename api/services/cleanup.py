#!/usr/bin/env python3
"""
TTL sweep for the cache tables.
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from api.database import DataProvider

logger = logging.getLogger(__name__)

NOTIFICATION_RETENTION_DAYS = 90

# Result key per swept table
EXPIRING_TABLE_KEYS = {
    "user_cache": "deletedUserCache",
    "contract_cache": "deletedContractCache",
    "auction_completions_cache": "deletedAuctionCompletions",
}


async def cleanup_cache(provider: DataProvider) -> Dict[str, Any]:
    """Delete expired cache rows and old read notifications.

    Every table is swept on its own; a failing table counts as 0 deleted and
    does not stop the others.
    """
    started = time.monotonic()
    results: Dict[str, int] = {}

    for table, key in EXPIRING_TABLE_KEYS.items():
        try:
            results[key] = await provider.delete_expired_rows(table)
            logger.info(f"Deleted {results[key]} expired {table} entries")
        except Exception as e:
            logger.error(f"Error cleaning {table}: {e}")
            results[key] = 0

    # Unread notifications are kept indefinitely
    cutoff = datetime.now(timezone.utc) - timedelta(days=NOTIFICATION_RETENTION_DAYS)
    try:
        results["deletedNotifications"] = await provider.delete_read_notifications_before(cutoff)
        logger.info(f"Deleted {results['deletedNotifications']} old read notifications")
    except Exception as e:
        logger.error(f"Error cleaning notifications: {e}")
        results["deletedNotifications"] = 0

    elapsed_ms = int((time.monotonic() - started) * 1000)
    total = sum(results.values())
    logger.info(f"🧹 Cache cleanup completed in {elapsed_ms}ms, total deleted: {total}")

    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "elapsed": f"{elapsed_ms}ms",
        "results": results,
        "totalDeleted": total,
    }
