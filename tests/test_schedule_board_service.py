"""
Tests for the schedule board service.
"""

import asyncio
import itertools
from dataclasses import replace
from datetime import time
from typing import List, Optional, Sequence

import pendulum
import pytest

from salonboard.domain.exceptions import PersistenceFailure, SchedulingError, StoreError
from salonboard.domain.models import DateRange, Resource, ScheduleItem, TimeGrid
from salonboard.services.schedule_board import ScheduleBoardService


class StubStore:
    """Store double with scripted failures and an optional gate to hold answers back."""

    def __init__(self, resources: List[Resource], items: List[ScheduleItem]):
        self._resources = resources
        self._items = items
        self.failures: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.upserts: List[ScheduleItem] = []
        self.deletes: List[str] = []
        self._ids = itertools.count(1)

    async def load_resources(self):
        return list(self._resources)

    async def load_items(self, resource_ids: Sequence[str], date_range: DateRange):
        return list(self._items)

    async def upsert_item(self, item: ScheduleItem) -> ScheduleItem:
        self.upserts.append(item)
        failure = self.failures.pop(0) if self.failures else None
        gate = self.gate
        if gate is not None:
            await gate.wait()
        if failure:
            raise StoreError(failure)
        if item.persisted:
            return item
        return replace(item, id=f"srv-{next(self._ids)}", persisted=True)

    async def delete_item(self, item_id: str) -> None:
        self.deletes.append(item_id)
        if self.failures:
            raise StoreError(self.failures.pop(0))


def _item(item_id, start="09:00", duration=60, resource_id="anna", day="2024-11-25"):
    return ScheduleItem(
        id=item_id,
        resource_id=resource_id,
        date=day,
        start_time=start,
        duration_minutes=duration,
    )


def _build_service(*extra_items):
    """Create a service with a stub store holding anna and ben."""
    resources = [Resource("anna", "Anna", "#FFA000"), Resource("ben", "Ben")]
    items = [_item("a"), _item("b", start="11:00", resource_id="ben"), *extra_items]
    store = StubStore(resources, items)
    counter = itertools.count(1)
    service = ScheduleBoardService(
        store,
        TimeGrid(start_of_day=time(8, 0), slot_minutes=30, slot_count=24),
        row_height=60.0,
        palette=["#111111", "#222222"],
        id_factory=lambda: f"local-{next(counter)}",
    )
    asyncio.run(service.load_week("2024-11-25"))
    return service, store


class TestLoading:
    """Tests for loading a calendar page."""

    def test_load_applies_palette(self):
        """Test that stylists without a colour get one from the palette."""
        service, _ = _build_service()

        assert [r.color for r in service.roster] == ["#FFA000", "#222222"]
        assert len(service.items) == 2

    def test_load_skips_unknown_stylists_and_other_weeks(self):
        """Test that foreign rows do not reach the working set."""
        service, _ = _build_service(
            _item("z", resource_id="zoe"),
            _item("later", day="2024-12-05"),
        )

        assert sorted(item.id for item in service.items) == ["a", "b"]

    def test_engine_before_load_raises(self):
        """Test that reads need a loaded page."""
        service = ScheduleBoardService(StubStore([], []), TimeGrid(start_of_day=time(8, 0)))

        with pytest.raises(SchedulingError):
            service.items

    def test_layouts_and_summaries(self):
        """Test the read side projections."""
        service, _ = _build_service(_item("c", start="09:30", duration=30))

        day = service.day_layout("2024-11-25")
        week = service.week_layout("2024-11-25")
        summary = service.month_summary(2024, 11)

        assert [entry.item.id for entry in day[0].entries] == ["a", "c"]
        assert day[0].has_conflicts
        assert len(week) == 14
        assert summary.total("2024-11-25") == 3
        assert [item.id for item in service.day_detail("2024-11-25")] == ["a", "c", "b"]
        assert service.conflicts()["a"] == {"c"}


class TestOptimisticWrites:
    """Tests for optimistic mutations and rollback."""

    def test_move_is_persisted(self):
        """Test a successful move."""
        service, store = _build_service()

        moved = asyncio.run(service.move_item("a", "ben", time(10, 0)))

        assert (moved.resource_id, moved.start_time) == ("ben", time(10, 0))
        assert store.upserts[-1].resource_id == "ben"

    def test_noop_move_is_not_persisted(self):
        """Test that dropping an item on its own slot does not call the store."""
        service, store = _build_service()

        asyncio.run(service.move_item("a", "anna", time(9, 0)))

        assert store.upserts == []

    def test_drop_converts_offset_to_slot(self):
        """Test that a drop at 185 px lands on 09:30."""
        service, _ = _build_service()

        moved = asyncio.run(service.drop_item("a", "anna", 185.0))

        assert moved.start_time == time(9, 30)

    def test_failed_move_is_rolled_back(self):
        """Test that a store failure restores the item and reports it."""
        service, store = _build_service()
        store.failures.append("backend down")

        with pytest.raises(PersistenceFailure) as exc_info:
            asyncio.run(service.move_item("a", "ben", time(10, 0)))

        assert exc_info.value.rolled_back is True
        assert "backend down" in str(exc_info.value)
        assert service.engine.get("a") == _item("a")

    def test_retry_after_failure(self):
        """Test that a rolled back change can be retried."""
        service, store = _build_service()
        store.failures.append("backend down")
        with pytest.raises(PersistenceFailure) as exc_info:
            asyncio.run(service.move_item("a", "ben", time(10, 0)))

        moved = asyncio.run(service.retry(exc_info.value))

        assert moved.resource_id == "ben"
        assert service.engine.get("a").resource_id == "ben"

    def test_create_adopts_store_id(self):
        """Test that a created item is re-keyed to the id the store assigned."""
        service, _ = _build_service()

        created = asyncio.run(service.create_item("anna", "2024-11-26", time(14, 0), 45, label="Neu"))

        assert created.id == "srv-1"
        assert created.persisted
        assert "local-1" not in service.engine

    def test_duplicate_is_stored(self):
        """Test that the clone is created in the store."""
        service, store = _build_service()

        clone = asyncio.run(service.duplicate_item("a"))

        assert clone.start_time == time(10, 0)
        assert clone.id == "srv-1"
        assert not store.upserts[-1].persisted

    def test_delete_of_local_item_skips_store(self):
        """Test that an item the store never saw is only removed locally."""
        service, store = _build_service()
        local_id = service.engine.create("anna", "2024-11-26", "10:00", 30).item_id

        assert asyncio.run(service.delete_item(local_id)) is True
        assert store.deletes == []

    def test_delete_of_absent_item(self):
        """Test that deleting twice reports the second delete as a no-op."""
        service, store = _build_service()

        assert asyncio.run(service.delete_item("a")) is True
        assert asyncio.run(service.delete_item("a")) is False
        assert store.deletes == ["a"]

    def test_failed_delete_restores_item(self):
        """Test rollback of a delete."""
        service, store = _build_service()
        store.failures.append("backend down")

        with pytest.raises(PersistenceFailure):
            asyncio.run(service.delete_item("a"))
        assert "a" in service.engine


class TestStaleResults:
    """Tests for answers that arrive after a newer local change."""

    def test_stale_success_is_discarded(self):
        """Test that an older move result does not overwrite a newer move."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            first = asyncio.create_task(service.move_item("a", "ben", time(10, 0)))
            await asyncio.sleep(0)
            gate, store.gate = store.gate, None
            await service.move_item("a", "ben", time(11, 0))
            gate.set()
            await first

        asyncio.run(scenario())

        assert service.engine.get("a").start_time == time(11, 0)

    def test_stale_failure_does_not_roll_back(self):
        """Test that a late failure leaves the newer change in place and is not retried."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            store.failures.append("timeout")
            first = asyncio.create_task(service.move_item("a", "ben", time(10, 0)))
            await asyncio.sleep(0)
            gate, store.gate = store.gate, None
            await service.move_item("a", "ben", time(11, 0))
            gate.set()
            with pytest.raises(PersistenceFailure) as exc_info:
                await first
            return exc_info.value

        failure = asyncio.run(scenario())

        assert failure.rolled_back is False
        assert service.engine.get("a").start_time == time(11, 0)
        assert asyncio.run(service.retry(failure)) is None

    def test_date_range_is_kept(self):
        """Test that the loaded page is remembered."""
        service, _ = _build_service()

        assert service.date_range.start == pendulum.date(2024, 11, 25)


class TestChangesDuringCreate:
    """Tests for changes to an item whose create is still waiting on the store."""

    def test_move_waits_for_create_and_updates_store_row(self):
        """Test that the move is sent as an update of the created row, not as a second create."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            create = asyncio.create_task(service.create_item("anna", "2024-11-26", time(14, 0), 45))
            await asyncio.sleep(0)
            gate, store.gate = store.gate, None
            move = asyncio.create_task(service.move_item("local-1", "ben", time(15, 0)))
            await asyncio.sleep(0)
            gate.set()
            await create
            return await move

        moved = asyncio.run(scenario())

        assert [(item.id, item.persisted) for item in store.upserts] == [("local-1", False), ("srv-1", True)]
        assert moved.id == "srv-1"
        assert (moved.resource_id, moved.start_time) == ("ben", time(15, 0))
        assert sorted(item.id for item in service.items) == ["a", "b", "srv-1"]

    def test_failed_move_after_create_is_rolled_back_and_retryable(self):
        """Test that the newest change is rolled back even though the item was re-keyed meanwhile."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            create = asyncio.create_task(service.create_item("anna", "2024-11-26", time(14, 0), 45))
            await asyncio.sleep(0)
            gate, store.gate = store.gate, None
            store.failures.append("backend down")
            move = asyncio.create_task(service.move_item("local-1", "ben", time(15, 0)))
            await asyncio.sleep(0)
            gate.set()
            await create
            with pytest.raises(PersistenceFailure) as exc_info:
                await move
            return exc_info.value

        failure = asyncio.run(scenario())

        assert failure.rolled_back is True
        restored = service.engine.get("srv-1")
        assert (restored.resource_id, restored.start_time) == ("anna", time(14, 0))

        moved = asyncio.run(service.retry(failure))

        assert (moved.id, moved.resource_id) == ("srv-1", "ben")
        assert (store.upserts[-1].id, store.upserts[-1].persisted) == ("srv-1", True)

    def test_delete_waits_for_create_and_removes_store_row(self):
        """Test that deleting during a create does not leave the created row behind."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            create = asyncio.create_task(service.create_item("anna", "2024-11-26", time(14, 0), 45))
            await asyncio.sleep(0)
            store.gate.set()
            deleted = await service.delete_item("local-1")
            await create
            return deleted

        assert asyncio.run(scenario()) is True
        assert store.deletes == ["srv-1"]
        assert sorted(item.id for item in service.items) == ["a", "b"]

    def test_duplicate_of_pending_item_creates_one_new_row(self):
        """Test that duplicating during a create adds exactly one more row."""
        service, store = _build_service()

        async def scenario():
            store.gate = asyncio.Event()
            create = asyncio.create_task(service.create_item("anna", "2024-11-26", time(14, 0), 45))
            await asyncio.sleep(0)
            gate, store.gate = store.gate, None
            clone = await service.duplicate_item("local-1")
            gate.set()
            await create
            return clone

        clone = asyncio.run(scenario())

        assert [item.persisted for item in store.upserts] == [False, False]
        assert clone.start_time == time(14, 45)
        assert len(service.items) == 4
