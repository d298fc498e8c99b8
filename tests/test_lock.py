"""
Unit tests for the settlement lock and idempotency keys.
"""
from datetime import timedelta

import pytest

from crown_settlement.core.domain import CrownStatus, LockState
from crown_settlement.core.idempotency import MANUAL_NAMESPACE, NIGHTLY_NAMESPACE, generate_key
from crown_settlement.core.lock import LockManager


@pytest.fixture
def lock(memory_store, settings, clock) -> LockManager:
    return LockManager(memory_store, settings, now=clock)


class TestLockManager:
    """Test suite for LockManager."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_acquire_writes_both_fields(self, lock, memory_store, clock, date_key) -> None:
        state = await lock.acquire_or_skip(date_key)

        assert state is LockState.ACQUIRED
        assert memory_store.crown_status.lock_holder_since == clock()
        assert memory_store.crown_status.lock_holder_date_key == date_key

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_already_settled_wins_over_lock(self, lock, memory_store, clock, date_key) -> None:
        memory_store.crown_status = CrownStatus(
            settlement_date_key=date_key,
            lock_holder_since=clock() - timedelta(hours=1),
            lock_holder_date_key=date_key,
        )

        assert await lock.acquire_or_skip(date_key) is LockState.ALREADY_SETTLED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lock_just_under_threshold_is_held(self, lock, memory_store, clock, date_key) -> None:
        memory_store.crown_status = CrownStatus(
            lock_holder_since=clock() - timedelta(minutes=9, seconds=59),
            lock_holder_date_key=date_key,
        )

        assert await lock.acquire_or_skip(date_key) is LockState.ALREADY_SETTLING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_lock_at_threshold_is_stale(self, lock, memory_store, clock, date_key) -> None:
        memory_store.crown_status = CrownStatus(
            lock_holder_since=clock() - timedelta(minutes=10),
            lock_holder_date_key="2025-01-05",
        )

        assert await lock.acquire_or_skip(date_key) is LockState.ACQUIRED
        assert memory_store.crown_status.lock_holder_date_key == date_key

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_acquire_is_already_settling(self, lock, date_key) -> None:
        assert await lock.acquire_or_skip(date_key) is LockState.ACQUIRED
        assert await lock.acquire_or_skip(date_key) is LockState.ALREADY_SETTLING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self, lock, memory_store, date_key) -> None:
        with pytest.raises(ValueError):
            async with lock.hold(date_key) as state:
                assert state is LockState.ACQUIRED
                raise ValueError("boom")

        assert memory_store.crown_status.lock_holder_since is None
        assert memory_store.crown_status.lock_holder_date_key is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hold_does_not_release_foreign_lock(self, lock, memory_store, clock, date_key) -> None:
        held_since = clock() - timedelta(minutes=1)
        memory_store.crown_status = CrownStatus(lock_holder_since=held_since, lock_holder_date_key=date_key)

        async with lock.hold(date_key) as state:
            assert state is LockState.ALREADY_SETTLING

        assert memory_store.crown_status.lock_holder_since == held_since

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_release_failure_does_not_mask_error(self, lock, memory_store, date_key, mocker) -> None:
        mocker.patch.object(memory_store, "merge_crown_status", side_effect=RuntimeError("store down"))

        with pytest.raises(ValueError, match="original"):
            async with lock.hold(date_key):
                raise ValueError("original")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_release_propagates_errors(self, lock, memory_store, mocker) -> None:
        mocker.patch.object(memory_store, "merge_crown_status", side_effect=RuntimeError("store down"))

        with pytest.raises(RuntimeError):
            await lock.release()


class TestIdempotencyKeys:
    """Test suite for charge idempotency keys."""

    @pytest.mark.unit
    def test_same_inputs_same_key(self) -> None:
        first = generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "alice", 2500)
        second = generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "alice", 2500)

        assert first == second == "nightly:2025-01-06:alice:2500"

    @pytest.mark.unit
    def test_namespaces_do_not_collide(self) -> None:
        nightly = generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "alice", 2500)
        manual = generate_key(MANUAL_NAMESPACE, "2025-01-06", "alice", 2500)

        assert nightly != manual
        assert manual == "admin-assign:2025-01-06:alice:2500"

    @pytest.mark.unit
    def test_any_input_change_changes_key(self) -> None:
        base = generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "alice", 2500)

        assert base != generate_key(NIGHTLY_NAMESPACE, "2025-01-07", "alice", 2500)
        assert base != generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "bob", 2500)
        assert base != generate_key(NIGHTLY_NAMESPACE, "2025-01-06", "alice", 2501)

    @pytest.mark.unit
    def test_namespace_required(self) -> None:
        with pytest.raises(ValueError):
            generate_key("", "2025-01-06", "alice", 2500)
