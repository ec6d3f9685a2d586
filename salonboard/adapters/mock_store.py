"""
Mock scheduling store for running without a backend.
"""

import itertools
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..domain.exceptions import StoreError
from ..domain.models import DateRange, Resource, ScheduleItem
from .rows import item_to_row, items_from_rows, resource_from_row

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = Path(__file__).parent / "mock_schedule_data.json"


class MockSchedulingStore:
    """
    In-memory store seeded from a JSON file.

    The file holds ``{"stylists": [...], "items": [...]}`` rows in the same
    shape the REST backend returns. With ``write_back`` every change is
    written back to the file, so consecutive CLI runs see each other's edits.
    ``fail_next`` makes the next write calls fail, for exercising rollback.
    """

    def __init__(
        self,
        data_file: Optional[Path] = None,
        timezone: str = "Europe/Berlin",
        write_back: bool = False,
    ):
        self.data_file = Path(data_file) if data_file else DEFAULT_DATA_FILE
        self.timezone = timezone
        self.write_back = write_back
        self._failures: List[str] = []
        self._ids = itertools.count(1)
        self._load_data()

    def _load_data(self) -> None:
        """Load stylists and items from the JSON file."""
        if self.data_file.exists():
            try:
                with open(self.data_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                raise StoreError(f"Could not read mock data {self.data_file}: {exc}") from exc
        else:
            # Fallback to empty if file doesn't exist
            data = {}

        self._stylist_rows: List[Dict[str, Any]] = list(data.get("stylists", []))
        self.items: Dict[str, ScheduleItem] = {
            item.id: item for item in items_from_rows(data.get("items", []), self.timezone)
        }

    def fail_next(self, count: int = 1, message: str = "simulated store outage") -> None:
        """Make the next ``count`` write calls raise StoreError."""
        self._failures.extend([message] * count)

    async def load_resources(self) -> List[Resource]:
        return [resource_from_row(row) for row in self._stylist_rows]

    async def load_items(self, resource_ids: Sequence[str], date_range: DateRange) -> List[ScheduleItem]:
        wanted = set(resource_ids)
        return sorted(
            (
                item for item in self.items.values()
                if item.resource_id in wanted and item.date in date_range
            ),
            key=lambda item: (item.date, item.start_minutes, item.id),
        )

    async def upsert_item(self, item: ScheduleItem) -> ScheduleItem:
        self._maybe_fail()
        stored = item if item.persisted else replace(item, id=self._new_id(), persisted=True)
        previous = self.items.get(stored.id)
        self.items[stored.id] = stored
        try:
            self._save()
        except StoreError:
            self._restore(stored.id, previous)
            raise
        return stored

    async def delete_item(self, item_id: str) -> None:
        self._maybe_fail()
        previous = self.items.pop(item_id, None)
        if previous is None:
            return
        try:
            self._save()
        except StoreError:
            self._restore(item_id, previous)
            raise

    def _restore(self, item_id: str, previous: Optional[ScheduleItem]) -> None:
        """Undo an in-memory change whose write to the data file failed."""
        if previous is None:
            self.items.pop(item_id, None)
        else:
            self.items[item_id] = previous

    def _maybe_fail(self) -> None:
        if self._failures:
            raise StoreError(self._failures.pop(0))

    def _new_id(self) -> str:
        item_id = f"m{next(self._ids)}"
        while item_id in self.items:
            item_id = f"m{next(self._ids)}"
        return item_id

    def _save(self) -> None:
        if not self.write_back:
            return
        data = {
            "stylists": self._stylist_rows,
            "items": [item_to_row(item) for item in self.items.values()],
        }
        try:
            with open(self.data_file, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
        except OSError as exc:
            raise StoreError(f"Could not write mock data {self.data_file}: {exc}") from exc
        logger.debug("Wrote %d items to %s", len(self.items), self.data_file)
