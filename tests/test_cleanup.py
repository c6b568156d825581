#!/usr/bin/env python3
"""
Unit tests for the cache TTL sweep
"""

import asyncio
from datetime import datetime, timedelta, timezone

from api.database import cache_expiry
from api.models.user import CachedContract, CachedUser
from api.services.cleanup import cleanup_cache


def _past():
    return datetime.now(timezone.utc) - timedelta(days=1)


class TestCleanup:

    def test_sweeps_expired_rows_and_old_read_notifications(self, provider):
        now = datetime.now(timezone.utc)
        provider.user_cache.update({
            "0x" + "1" * 40: CachedUser(eth_address="0x" + "1" * 40, expires_at=_past()),
            "0x" + "2" * 40: CachedUser(eth_address="0x" + "2" * 40, expires_at=cache_expiry()),
        })
        provider.contract_cache["0x" + "3" * 40] = CachedContract(contract_address="0x" + "3" * 40, expires_at=_past())
        provider.notifications.extend([
            {"id": 1, "read": True, "created_at": now - timedelta(days=120)},
            {"id": 2, "read": False, "created_at": now - timedelta(days=120)},
            {"id": 3, "read": True, "created_at": now - timedelta(days=10)},
        ])

        result = asyncio.run(cleanup_cache(provider))

        assert result["success"] is True
        assert result["results"] == {
            "deletedUserCache": 1,
            "deletedContractCache": 1,
            "deletedAuctionCompletions": 0,
            "deletedNotifications": 1,
        }
        assert result["totalDeleted"] == 3
        assert result["elapsed"].endswith("ms")
        assert list(provider.user_cache) == ["0x" + "2" * 40]
        assert [n["id"] for n in provider.notifications] == [2, 3]

    def test_failing_table_does_not_stop_the_sweep(self, provider, monkeypatch):
        original = provider.delete_expired_rows

        async def flaky(table):
            if table == "contract_cache":
                raise RuntimeError("relation does not exist")
            return await original(table)

        monkeypatch.setattr(provider, "delete_expired_rows", flaky)
        provider.user_cache["0x" + "1" * 40] = CachedUser(eth_address="0x" + "1" * 40, expires_at=_past())

        result = asyncio.run(cleanup_cache(provider))

        assert result["results"]["deletedContractCache"] == 0
        assert result["results"]["deletedUserCache"] == 1
        assert result["totalDeleted"] == 1
