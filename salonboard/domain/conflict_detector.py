"""
Overlap detection for schedule items.

Pure domain logic: callers decide when to recompute (after every change to an
item's stylist, day, start time or duration). Overlaps are reported as
warnings, never rejected.
"""

import heapq
from collections import defaultdict
from typing import Dict, Iterable, List, Set, Tuple

from pendulum import Date

from .models import ScheduleItem


class ConflictDetector:
    """
    Finds items that overlap on the same stylist and day.

    Algorithm:
    1. Group items by (stylist, day)
    2. Sort each group by start time
    3. Sweep once, keeping a min-heap of the end times of still-active items
    4. Every active item overlaps the item being visited

    Intervals are half-open, so an item ending at 10:00 does not conflict with
    one starting at 10:00. Zero-length items never conflict.
    """

    def find_conflicts(self, items: Iterable[ScheduleItem]) -> Dict[str, Set[str]]:
        """
        Map every item id to the ids of the items it overlaps.

        Items without conflicts map to an empty set.
        """
        items = list(items)
        conflicts: Dict[str, Set[str]] = {item.id: set() for item in items}

        for group in self._group_by_column(items).values():
            for first, second in self._sweep(group):
                conflicts[first].add(second)
                conflicts[second].add(first)

        return conflicts

    def conflicting_pairs(self, items: Iterable[ScheduleItem]) -> List[Tuple[str, str]]:
        """Sorted list of overlapping id pairs, each pair ordered."""
        pairs: Set[Tuple[str, str]] = set()
        for group in self._group_by_column(items).values():
            for first, second in self._sweep(group):
                pairs.add((min(first, second), max(first, second)))
        return sorted(pairs)

    def conflicts_with(
        self,
        candidate: ScheduleItem,
        items: Iterable[ScheduleItem],
    ) -> List[ScheduleItem]:
        """
        Items a proposed placement would overlap, ordered by start time.

        Used to preview a drop before it is applied. The candidate itself (same
        id) is ignored.
        """
        overlapping = [
            item for item in items
            if item.id != candidate.id and candidate.overlaps(item)
        ]
        return sorted(overlapping, key=lambda item: (item.start_minutes, item.id))

    @staticmethod
    def has_conflict(first: ScheduleItem, second: ScheduleItem) -> bool:
        return first.id != second.id and first.overlaps(second)

    @staticmethod
    def _group_by_column(
        items: Iterable[ScheduleItem],
    ) -> Dict[Tuple[str, Date], List[ScheduleItem]]:
        groups: Dict[Tuple[str, Date], List[ScheduleItem]] = defaultdict(list)
        for item in items:
            if item.duration_minutes > 0:
                groups[item.slot_key].append(item)
        return groups

    @staticmethod
    def _sweep(group: List[ScheduleItem]) -> Iterable[Tuple[str, str]]:
        """Yield overlapping id pairs within one (stylist, day) group."""
        ordered = sorted(group, key=lambda item: (item.start_minutes, item.end_minutes, item.id))
        # (end_minutes, sequence, id); sequence keeps heap entries comparable
        active: List[Tuple[int, int, str]] = []

        for sequence, item in enumerate(ordered):
            while active and active[0][0] <= item.start_minutes:
                heapq.heappop(active)

            for _, _, active_id in active:
                if active_id != item.id:
                    yield active_id, item.id

            heapq.heappush(active, (item.end_minutes, sequence, item.id))
