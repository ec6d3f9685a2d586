"""
Domain models for the scheduling core: time grid, stylists and schedule items.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pendulum
from pendulum import Date

from .exceptions import InvalidTargetError, ValidationError

MINUTES_PER_DAY = 24 * 60

_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def as_date(value: date | str) -> Date:
    """
    Normalise a calendar day to a pendulum ``Date``.

    Accepts ``date``/``datetime`` objects and ``YYYY-MM-DD`` strings.
    """
    # datetime (and pendulum.DateTime) is a date subclass, so check it first
    if isinstance(value, datetime):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, Date):
        return value
    if isinstance(value, date):
        return pendulum.date(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return pendulum.from_format(value.strip(), "YYYY-MM-DD").date()
        except ValueError as exc:
            raise ValidationError(f"Malformed date: {value!r} (expected YYYY-MM-DD)") from exc
    raise ValidationError(f"Malformed date: {value!r}")


def as_time(value: time | str) -> time:
    """
    Normalise a wall-clock time to minute precision.

    Accepts ``time`` objects and ``HH:MM`` / ``HH:MM:SS`` strings.
    """
    if isinstance(value, str):
        try:
            value = time.fromisoformat(value.strip())
        except ValueError as exc:
            raise ValidationError(f"Malformed time: {value!r} (expected HH:MM)") from exc
    if not isinstance(value, time):
        raise ValidationError(f"Malformed time: {value!r}")
    return time(value.hour, value.minute)


def minutes_of(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def time_from_minutes(minutes: int) -> time:
    """Wall-clock time for a minute count, wrapping around midnight."""
    minutes %= MINUTES_PER_DAY
    return time(minutes // 60, minutes % 60)


def is_valid_color(value: object) -> bool:
    """True for ``#RRGGBB`` colour strings."""
    return isinstance(value, str) and bool(_COLOR_PATTERN.match(value))


class ItemKind(str, Enum):
    """What a schedule item represents."""
    BOOKING = "booking"
    SHIFT = "shift"


@dataclass(frozen=True)
class Resource:
    """
    A bookable stylist.
    """
    id: str
    name: str
    color: Optional[str] = None


class ResourceRoster:
    """
    Ordered, read-only list of stylists for one scheduling session.

    The position of a stylist in the roster is its column index in every view.
    """

    def __init__(self, resources: Iterable[Resource] = ()):
        self._resources: Tuple[Resource, ...] = tuple(resources)
        self._index: Dict[str, int] = {}
        for position, resource in enumerate(self._resources):
            if resource.id in self._index:
                raise ValidationError(f"Duplicate stylist id in roster: {resource.id}")
            self._index[resource.id] = position

    def __iter__(self) -> Iterator[Resource]:
        return iter(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._index

    def __repr__(self) -> str:
        return f"ResourceRoster({list(self.ids())!r})"

    def ids(self) -> List[str]:
        return [resource.id for resource in self._resources]

    def index_of(self, resource_id: str) -> int:
        """Column index of a stylist; raises InvalidTargetError if unknown."""
        try:
            return self._index[resource_id]
        except KeyError:
            raise InvalidTargetError(resource_id) from None

    def get(self, resource_id: str) -> Resource:
        return self._resources[self.index_of(resource_id)]

    def with_palette(self, palette: Sequence[str]) -> "ResourceRoster":
        """
        Return a roster where every stylist has a display colour.

        Stylists without a valid ``#RRGGBB`` colour get one from the palette,
        picked by roster position.
        """
        if not palette:
            return self

        coloured: List[Resource] = []
        for position, resource in enumerate(self._resources):
            if is_valid_color(resource.color):
                coloured.append(resource)
            else:
                coloured.append(replace(resource, color=palette[position % len(palette)]))
        return ResourceRoster(coloured)


@dataclass(frozen=True)
class TimeGrid:
    """
    A day's operating hours divided into fixed-size slots.

    The same grid is used for day, week and month views. Inputs outside the
    visible window clamp instead of failing, since drag gestures routinely
    produce out-of-bounds positions.
    """
    start_of_day: time
    slot_minutes: int = 30
    slot_count: int = 24

    def __post_init__(self):
        object.__setattr__(self, "start_of_day", as_time(self.start_of_day))
        if self.slot_minutes <= 0:
            raise ValidationError(f"slot_minutes must be positive, got {self.slot_minutes}")
        if self.slot_count <= 0:
            raise ValidationError(f"slot_count must be positive, got {self.slot_count}")
        if self.end_minutes > MINUTES_PER_DAY:
            raise ValidationError(
                f"Grid starting {self.start_of_day:%H:%M} with {self.slot_count} x "
                f"{self.slot_minutes} min slots runs past midnight"
            )

    @classmethod
    def from_hours(cls, start: time, end: time, slot_minutes: int = 30) -> "TimeGrid":
        """Build a grid covering opening hours ``start``–``end``."""
        start = as_time(start)
        end = as_time(end)
        span = minutes_of(end) - minutes_of(start)
        if span <= 0:
            raise ValidationError(f"Closing time {end:%H:%M} must be after opening time {start:%H:%M}")
        slot_count = -(-span // slot_minutes)
        return cls(start_of_day=start, slot_minutes=slot_minutes, slot_count=slot_count)

    @property
    def start_minutes(self) -> int:
        return minutes_of(self.start_of_day)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.slot_count * self.slot_minutes

    def minutes_since_start(self, t: time) -> int:
        return minutes_of(t) - self.start_minutes

    def slot_offset(self, t: time) -> float:
        """Fractional, unclamped slot position of a time."""
        return self.minutes_since_start(t) / self.slot_minutes

    def slot_index_for_time(self, t: time) -> int:
        index = self.minutes_since_start(t) // self.slot_minutes
        return max(0, min(index, self.slot_count - 1))

    def time_for_slot_index(self, index: int) -> time:
        index = max(0, min(index, self.slot_count))
        minutes = self.start_minutes + index * self.slot_minutes
        if minutes >= MINUTES_PER_DAY:
            return time.max
        return time_from_minutes(minutes)

    def slot_index_for_offset(self, offset: float, row_height: float) -> int:
        """Slot under a vertical pixel offset inside the grid body."""
        if row_height <= 0:
            raise ValidationError(f"row_height must be positive, got {row_height}")
        index = int(offset // row_height)
        return max(0, min(index, self.slot_count - 1))

    def time_for_offset(self, offset: float, row_height: float) -> time:
        """Quantised start time for a drop at a vertical pixel offset."""
        return self.time_for_slot_index(self.slot_index_for_offset(offset, row_height))

    def snap(self, t: time) -> time:
        """Start time of the slot containing ``t`` (clamped to the grid)."""
        return self.time_for_slot_index(self.slot_index_for_time(t))

    def contains(self, t: time) -> bool:
        return self.start_minutes <= minutes_of(t) < self.end_minutes

    def slots(self) -> List[time]:
        return [self.time_for_slot_index(i) for i in range(self.slot_count)]

    def visible_range(self) -> Tuple[time, time]:
        return self.start_of_day, self.time_for_slot_index(self.slot_count)


@dataclass(frozen=True)
class DateRange:
    """
    Inclusive range of calendar days.
    """
    start: Date
    end: Date

    def __post_init__(self):
        object.__setattr__(self, "start", as_date(self.start))
        object.__setattr__(self, "end", as_date(self.end))
        if self.end < self.start:
            raise ValidationError(f"Range end {self.end} is before start {self.start}")

    @classmethod
    def single(cls, day: date | str) -> "DateRange":
        day = as_date(day)
        return cls(start=day, end=day)

    @classmethod
    def week_of(cls, day: date | str) -> "DateRange":
        """Monday to Sunday of the week containing ``day``."""
        monday = as_date(day).start_of("week")
        return cls(start=monday, end=monday.add(days=6))

    @classmethod
    def month_of(cls, year: int, month: int) -> "DateRange":
        first = pendulum.date(year, month, 1)
        return cls(start=first, end=first.end_of("month"))

    def __contains__(self, day: object) -> bool:
        if not isinstance(day, date):
            return False
        return self.start <= as_date(day) <= self.end

    def __len__(self) -> int:
        return self.end.toordinal() - self.start.toordinal() + 1

    def days(self) -> List[Date]:
        days: List[Date] = []
        current = self.start
        while current <= self.end:
            days.append(current)
            current = current.add(days=1)
        return days

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY')} - {self.end.format('DD.MM.YYYY')}"


@dataclass(frozen=True)
class ScheduleItem:
    """
    A booking or shift occupying ``[start_time, start_time + duration)`` on one
    stylist and one day.

    ``label`` and ``subtitle`` (client and service name) are display payload
    only. ``persisted`` is False while a locally created item awaits store
    confirmation.
    """
    id: str
    resource_id: str
    date: Date
    start_time: time
    duration_minutes: int
    label: str = ""
    subtitle: str = ""
    kind: ItemKind = ItemKind.BOOKING
    persisted: bool = field(default=True, compare=False)

    def __post_init__(self):
        if not self.id:
            raise ValidationError("Schedule item id must not be empty")
        if not self.resource_id:
            raise ValidationError(f"Schedule item {self.id} has no stylist")
        object.__setattr__(self, "date", as_date(self.date))
        object.__setattr__(self, "start_time", as_time(self.start_time))
        try:
            object.__setattr__(self, "kind", ItemKind(self.kind))
        except ValueError as exc:
            raise ValidationError(f"Unknown item kind: {self.kind!r}") from exc
        # bool is an int subclass; reject it explicitly
        if isinstance(self.duration_minutes, bool) or not isinstance(self.duration_minutes, int):
            raise ValidationError(f"Duration must be whole minutes, got {self.duration_minutes!r}")
        # Zero is tolerated for rows read from a store; mutations require > 0.
        if self.duration_minutes < 0:
            raise ValidationError(f"Duration must not be negative, got {self.duration_minutes}")

    @property
    def start_minutes(self) -> int:
        return minutes_of(self.start_time)

    @property
    def end_minutes(self) -> int:
        """End as minutes since midnight; may exceed one day."""
        return self.start_minutes + self.duration_minutes

    @property
    def end_time(self) -> time:
        return time_from_minutes(self.end_minutes)

    @property
    def slot_key(self) -> Tuple[str, Date]:
        """The (stylist, day) column this item sits in."""
        return self.resource_id, self.date

    def overlaps(self, other: "ScheduleItem") -> bool:
        """Half-open overlap on the same stylist and day; touching ends do not count."""
        if self.slot_key != other.slot_key:
            return False
        if self.duration_minutes == 0 or other.duration_minutes == 0:
            return False
        return self.start_minutes < other.end_minutes and other.start_minutes < self.end_minutes

    def __str__(self) -> str:
        return (
            f"{self.date.format('DD.MM.YYYY')} {self.start_time:%H:%M}–{self.end_time:%H:%M} "
            f"({self.duration_minutes} Min.) {self.label}".rstrip()
        )
