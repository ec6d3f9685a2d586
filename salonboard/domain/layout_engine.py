"""
Toolkit-agnostic layout of schedule items inside stylist/day columns.

Everything here returns numbers, never widgets. Offsets and heights are in the
caller's unit (pixels, rows, ...) as scaled by ``row_height``.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Set

from pendulum import Date

from .conflict_detector import ConflictDetector
from .exceptions import ValidationError
from .models import DateRange, Resource, ResourceRoster, ScheduleItem, TimeGrid, as_date


@dataclass(frozen=True)
class ItemLayout:
    """Vertical placement of one item."""
    top_offset: float
    height: float


@dataclass(frozen=True)
class PlacedItem:
    """
    An item ready for rendering.

    ``lane``/``lane_count`` split the column horizontally when items overlap:
    the block is drawn at ``lane / lane_count`` of the column width.
    """
    item: ScheduleItem
    top_offset: float
    height: float
    conflict: bool = False
    lane: int = 0
    lane_count: int = 1


@dataclass
class ColumnLayout:
    """All placed items of one stylist on one day, ordered by start time."""
    resource: Resource
    date: Date
    column_index: int
    entries: List[PlacedItem] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return any(entry.conflict for entry in self.entries)


class LayoutEngine:
    """
    Positions items within a stylist/day column.

    ``min_visible_slots`` is a display-only floor for very short items; it
    never changes the stored duration.
    """

    def __init__(self, min_visible_slots: float = 0.5, detector: Optional[ConflictDetector] = None):
        if min_visible_slots < 0:
            raise ValidationError(f"min_visible_slots must not be negative, got {min_visible_slots}")
        self.min_visible_slots = min_visible_slots
        self.detector = detector or ConflictDetector()

    def layout(self, item: ScheduleItem, grid: TimeGrid, row_height: float) -> ItemLayout:
        """
        Compute ``(top_offset, height)`` for an item on a grid.

        Both are clamped to the visible grid; a floor of ``min_visible_slots``
        keeps short items readable.
        """
        top_slots = _clamp(grid.slot_offset(item.start_time), 0, grid.slot_count)
        height_slots = _clamp(
            item.duration_minutes / grid.slot_minutes,
            self.min_visible_slots,
            grid.slot_count,
        )
        return ItemLayout(top_offset=top_slots * row_height, height=height_slots * row_height)

    @staticmethod
    def column_index(resource_id: str, roster: ResourceRoster) -> int:
        return roster.index_of(resource_id)

    def layout_column(
        self,
        items: Iterable[ScheduleItem],
        resource: Resource,
        day: date,
        grid: TimeGrid,
        row_height: float,
        roster: ResourceRoster,
        conflicts: Optional[Dict[str, Set[str]]] = None,
    ) -> ColumnLayout:
        """Lay out the items of one stylist on one day."""
        day = as_date(day)
        column_items = sorted(
            (item for item in items if item.resource_id == resource.id and item.date == day),
            key=lambda item: (item.start_minutes, item.id),
        )
        if conflicts is None:
            conflicts = self.detector.find_conflicts(column_items)

        lanes = self._assign_lanes(column_items)
        column = ColumnLayout(
            resource=resource,
            date=day,
            column_index=roster.index_of(resource.id),
        )

        for item in column_items:
            placement = self.layout(item, grid, row_height)
            lane, lane_count = lanes[item.id]
            column.entries.append(
                PlacedItem(
                    item=item,
                    top_offset=placement.top_offset,
                    height=placement.height,
                    conflict=bool(conflicts.get(item.id)),
                    lane=lane,
                    lane_count=lane_count,
                )
            )

        return column

    def layout_day(
        self,
        items: Iterable[ScheduleItem],
        roster: ResourceRoster,
        day: date,
        grid: TimeGrid,
        row_height: float,
    ) -> List[ColumnLayout]:
        """One column per stylist, in roster order."""
        items = list(items)
        conflicts = self.detector.find_conflicts(items)
        return [
            self.layout_column(items, resource, day, grid, row_height, roster, conflicts)
            for resource in roster
        ]

    def layout_week(
        self,
        items: Iterable[ScheduleItem],
        roster: ResourceRoster,
        anchor: date,
        grid: TimeGrid,
        row_height: float,
    ) -> List[ColumnLayout]:
        """Stylist columns for Monday to Sunday of the week containing ``anchor``, day by day."""
        items = list(items)
        conflicts = self.detector.find_conflicts(items)
        columns: List[ColumnLayout] = []
        for day in DateRange.week_of(anchor).days():
            for resource in roster:
                columns.append(
                    self.layout_column(items, resource, day, grid, row_height, roster, conflicts)
                )
        return columns

    @staticmethod
    def _assign_lanes(column_items: List[ScheduleItem]) -> Dict[str, tuple]:
        """
        Greedy interval partitioning per cluster of overlapping items.

        ``column_items`` must be sorted by start time. Returns
        ``{item_id: (lane, lane_count)}``.
        """
        lanes: Dict[str, tuple] = {}
        cluster: List[tuple] = []  # (item_id, lane)
        lane_ends: List[int] = []
        cluster_end = None

        def close_cluster():
            for item_id, lane in cluster:
                lanes[item_id] = (lane, len(lane_ends))

        for item in column_items:
            if cluster_end is not None and item.start_minutes >= cluster_end:
                close_cluster()
                cluster = []
                lane_ends = []
                cluster_end = None

            for lane, end in enumerate(lane_ends):
                if end <= item.start_minutes:
                    lane_ends[lane] = item.end_minutes
                    break
            else:
                lane = len(lane_ends)
                lane_ends.append(item.end_minutes)

            cluster.append((item.id, lane))
            cluster_end = item.end_minutes if cluster_end is None else max(cluster_end, item.end_minutes)

        close_cluster()
        return lanes


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(value, upper))
