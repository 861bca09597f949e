"""Tests for the in-memory quota ledger."""

import asyncio

import pytest

from trialproxy.app.services.quota_ledger import QuotaLedger


async def record_successes(ledger, key, count, ceiling=20):
    for _ in range(count):
        assert await ledger.try_reserve(key, ceiling) is True
        await ledger.commit(key)


class TestQuotaLedger:

    @pytest.mark.asyncio
    async def test_unknown_key_has_zero_usage(self):
        ledger = QuotaLedger()
        assert await ledger.peek("nobody") == 0
        assert ledger.in_flight("nobody") == 0
        assert ledger.tracked_keys == 0

    @pytest.mark.asyncio
    async def test_commit_records_usage(self):
        ledger = QuotaLedger()
        assert await ledger.try_reserve("user-1", 3) is True
        assert ledger.in_flight("user-1") == 1
        assert await ledger.peek("user-1") == 0

        assert await ledger.commit("user-1") == 1
        assert ledger.in_flight("user-1") == 0
        assert await ledger.peek("user-1") == 1

    @pytest.mark.asyncio
    async def test_release_records_nothing(self):
        ledger = QuotaLedger()
        await ledger.try_reserve("user-1", 3)

        ledger.release("user-1")

        assert ledger.in_flight("user-1") == 0
        assert await ledger.peek("user-1") == 0
        assert ledger.snapshot() == {}

    @pytest.mark.asyncio
    async def test_reserve_stops_at_ceiling(self):
        ledger = QuotaLedger()
        await record_successes(ledger, "user-1", 3, ceiling=3)

        assert await ledger.try_reserve("user-1", 3) is False
        assert ledger.in_flight("user-1") == 0
        assert await ledger.peek("user-1") == 3

    @pytest.mark.asyncio
    async def test_in_flight_reservations_count_against_ceiling(self):
        """The last slot can be held by only one request at a time."""
        ledger = QuotaLedger()
        await record_successes(ledger, "user-1", 2, ceiling=3)

        assert await ledger.try_reserve("user-1", 3) is True
        assert await ledger.try_reserve("user-1", 3) is False

        ledger.release("user-1")
        assert await ledger.try_reserve("user-1", 3) is True

    @pytest.mark.asyncio
    async def test_concurrent_reservations_never_pass_ceiling(self):
        ledger = QuotaLedger()
        results = await asyncio.gather(
            *(ledger.try_reserve("user-1", 20) for _ in range(50))
        )
        assert sum(results) == 20
        assert ledger.in_flight("user-1") == 20

    @pytest.mark.asyncio
    async def test_settling_without_reservation_fails(self):
        ledger = QuotaLedger()
        with pytest.raises(ValueError):
            await ledger.commit("user-1")
        with pytest.raises(ValueError):
            ledger.release("user-1")

    @pytest.mark.asyncio
    async def test_keys_are_independent(self):
        ledger = QuotaLedger()
        await record_successes(ledger, "user-1", 1)
        await record_successes(ledger, "user-2", 2)

        assert ledger.snapshot() == {"user-1": 1, "user-2": 2}
        assert ledger.tracked_keys == 2

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        ledger = QuotaLedger()
        await record_successes(ledger, "user-1", 1)

        snapshot = ledger.snapshot()
        snapshot["user-1"] = 99
        assert await ledger.peek("user-1") == 1
