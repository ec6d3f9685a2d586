"""
Application service for the schedule board.

The service loads a working set through a store adapter, hands reads to the
layout and aggregation code, and drives writes through the MutationEngine
with optimistic updates:

1. apply the mutation locally so the view responds immediately,
2. await the store,
3. on failure roll the local change back and raise ``PersistenceFailure``,
4. on success adopt the store's answer, unless a newer local change to the
   same item has been applied meanwhile.

The store dependency is a simple protocol so the HTTP adapter, the mock
store, or a test stub can be plugged in.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date, time
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set

from ..domain.exceptions import PersistenceFailure, SchedulingError, StoreError
from ..domain.layout_engine import ColumnLayout, LayoutEngine
from ..domain.models import (
    DateRange,
    ItemKind,
    Resource,
    ResourceRoster,
    ScheduleItem,
    TimeGrid,
)
from ..domain.mutation_engine import Mutation, MutationEngine, MutationKind
from ..domain.view_aggregator import MonthSummary, ViewAggregator

logger = logging.getLogger(__name__)


class SchedulingStoreProtocol(Protocol):
    """Protocol describing the persistence behaviour needed by the service."""

    async def load_resources(self) -> List[Resource]:
        """Return the stylist roster."""

    async def load_items(
        self,
        resource_ids: Sequence[str],
        date_range: DateRange,
    ) -> List[ScheduleItem]:
        """Return the items of the given stylists within the date range."""

    async def upsert_item(self, item: ScheduleItem) -> ScheduleItem:
        """Persist an item and return the stored version (possibly with a new id)."""

    async def delete_item(self, item_id: str) -> None:
        """Remove an item from the store."""


class ScheduleBoardService:
    """
    Orchestrates store access, the working set and the view projections.
    """

    def __init__(
        self,
        store: SchedulingStoreProtocol,
        grid: TimeGrid,
        *,
        row_height: float = 60.0,
        layout_engine: Optional[LayoutEngine] = None,
        aggregator: Optional[ViewAggregator] = None,
        palette: Sequence[str] = (),
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._store = store
        self.grid = grid
        self.row_height = row_height
        self._layout_engine = layout_engine or LayoutEngine()
        self._aggregator = aggregator or ViewAggregator()
        self._palette = list(palette)
        self._id_factory = id_factory
        self._engine: Optional[MutationEngine] = None
        self._date_range: Optional[DateRange] = None
        # local id -> resolves once the store has answered its create
        self._pending_creates: Dict[str, asyncio.Future] = {}

    # --- Loading --------------------------------------------------------------

    async def load(self, date_range: DateRange) -> None:
        """Load the roster and the working set for one calendar page."""
        resources = await self._store.load_resources()
        roster = ResourceRoster(resources).with_palette(self._palette)

        loaded = await self._store.load_items(roster.ids(), date_range)
        items: List[ScheduleItem] = []
        for item in loaded:
            if item.resource_id not in roster:
                logger.warning("Skipping item %s: stylist %s not in roster", item.id, item.resource_id)
                continue
            if item.date not in date_range:
                continue
            items.append(item)

        self._engine = MutationEngine(roster, items, id_factory=self._id_factory)
        self._date_range = date_range
        logger.debug("Loaded %d items for %d stylists (%s)", len(items), len(roster), date_range)

    async def load_day(self, day: date) -> None:
        await self.load(DateRange.single(day))

    async def load_week(self, anchor: date) -> None:
        await self.load(DateRange.week_of(anchor))

    async def load_month(self, year: int, month: int) -> None:
        await self.load(DateRange.month_of(year, month))

    @property
    def engine(self) -> MutationEngine:
        if self._engine is None:
            raise SchedulingError("No calendar page loaded yet; call load() first.")
        return self._engine

    @property
    def roster(self) -> ResourceRoster:
        return self.engine.roster

    @property
    def items(self) -> List[ScheduleItem]:
        return self.engine.items

    @property
    def date_range(self) -> Optional[DateRange]:
        return self._date_range

    # --- Read side ------------------------------------------------------------

    def conflicts(self) -> Dict[str, Set[str]]:
        return self.engine.conflicts()

    def day_layout(self, day: date) -> List[ColumnLayout]:
        return self._layout_engine.layout_day(self.items, self.roster, day, self.grid, self.row_height)

    def week_layout(self, anchor: date) -> List[ColumnLayout]:
        return self._layout_engine.layout_week(self.items, self.roster, anchor, self.grid, self.row_height)

    def month_summary(self, year: int, month: int) -> MonthSummary:
        return self._aggregator.month_summary(self.items, year, month)

    def day_detail(self, day: date) -> List[ScheduleItem]:
        return self._aggregator.items_on_date(self.items, day)

    # --- Write side -----------------------------------------------------------

    async def create_item(
        self,
        resource_id: str,
        day: date,
        start_time: time,
        duration_minutes: int,
        *,
        label: str = "",
        subtitle: str = "",
        kind: ItemKind = ItemKind.BOOKING,
    ) -> ScheduleItem:
        mutation = self.engine.create(
            resource_id,
            day,
            start_time,
            duration_minutes,
            label=label,
            subtitle=subtitle,
            kind=kind,
        )
        return await self._persist(mutation)

    async def move_item(
        self,
        item_id: str,
        resource_id: str,
        start_time: time,
        *,
        day: Optional[date] = None,
    ) -> ScheduleItem:
        mutation = self.engine.move(item_id, resource_id, start_time, date=day)
        if mutation.is_noop:
            return mutation.item
        return await self._persist(mutation)

    async def drop_item(
        self,
        item_id: str,
        resource_id: str,
        offset: float,
        *,
        day: Optional[date] = None,
    ) -> ScheduleItem:
        """Move an item to the slot under a vertical pixel offset of a column."""
        start_time = self.grid.time_for_offset(offset, self.row_height)
        return await self.move_item(item_id, resource_id, start_time, day=day)

    async def duplicate_item(self, item_id: str) -> ScheduleItem:
        mutation = self.engine.duplicate(item_id)
        return await self._persist(mutation)

    async def delete_item(self, item_id: str) -> bool:
        """Delete an item; returns False if it was not in the working set."""
        mutation = self.engine.delete(item_id)
        if mutation is None:
            return False
        await self._persist(mutation)
        return True

    async def retry(self, failure: PersistenceFailure) -> Optional[ScheduleItem]:
        """
        Re-apply and persist a mutation whose persistence failed.

        A failure that was superseded by a newer change is not retried; the
        newer change already carries the latest intent.
        """
        if not failure.rolled_back:
            logger.info("Not retrying %s of %s: superseded", failure.mutation.kind.value, failure.mutation.item_id)
            return None
        mutation = self.engine.reapply(failure.mutation)
        return await self._persist(mutation)

    async def _persist(self, mutation: Mutation) -> ScheduleItem:
        creating = mutation.after is not None and not mutation.after.persisted
        if creating and mutation.kind in (MutationKind.CREATE, MutationKind.DUPLICATE):
            pending = asyncio.get_running_loop().create_future()
            self._pending_creates[mutation.item_id] = pending
            try:
                return await self._store_mutation(mutation)
            finally:
                del self._pending_creates[mutation.item_id]
                pending.set_result(None)

        # a change to an item whose create is in flight goes to the store id
        await self._settle_create(mutation.item_id)
        return await self._store_mutation(mutation)

    async def _settle_create(self, item_id: str) -> None:
        """Wait until a create for ``item_id`` still in flight has been answered."""
        pending = self._pending_creates.get(item_id)
        if pending is not None:
            logger.debug("Waiting for pending create of %s", item_id)
            await asyncio.shield(pending)

    async def _store_mutation(self, mutation: Mutation) -> ScheduleItem:
        persisted: Optional[ScheduleItem] = None
        try:
            if mutation.kind is MutationKind.DELETE:
                store_id = self.engine.resolve(mutation.item_id)
                # never stored, nothing to remove remotely
                if mutation.before.persisted or store_id != mutation.item_id:
                    await self._store.delete_item(store_id)
            else:
                target = mutation.after
                store_id = self.engine.resolve(target.id)
                if store_id != target.id:
                    target = replace(target, id=store_id, persisted=True)
                persisted = await self._store.upsert_item(target)
        except StoreError as exc:
            rolled_back = self.engine.rollback(mutation)
            logger.warning(
                "Could not save %s of %s (rolled back: %s): %s",
                mutation.kind.value, mutation.item_id, rolled_back, exc,
            )
            failure = PersistenceFailure(
                mutation,
                f"Änderung konnte nicht gespeichert werden: {exc}",
            )
            failure.rolled_back = rolled_back
            raise failure from exc

        if not self.engine.confirm(mutation, persisted):
            logger.info(
                "Discarding stale store result for %s of %s",
                mutation.kind.value, mutation.item_id,
            )

        if persisted is not None and persisted.id in self.engine:
            return self.engine.get(persisted.id)
        return mutation.item
