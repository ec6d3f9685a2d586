"""
Read-side projections for the week and month views.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

import pendulum
from pendulum import Date

from .models import DateRange, ResourceRoster, ScheduleItem, as_date

CountKey = Tuple[Date, str]


@dataclass
class MonthSummary:
    """Month grid plus per-stylist booking counts for its days."""
    year: int
    month: int
    weeks: List[List[Optional[Date]]]
    counts: Dict[CountKey, int] = field(default_factory=dict)

    def count(self, day: date, resource_id: str) -> int:
        return self.counts.get((as_date(day), resource_id), 0)

    def total(self, day: date) -> int:
        day = as_date(day)
        return sum(count for (counted_day, _), count in self.counts.items() if counted_day == day)


class ViewAggregator:
    """
    Summarises the working set for week and month granularities.

    Nothing here computes layouts, mutates items or talks to the store.
    """

    def counts_by_resource_and_date(
        self,
        items: Iterable[ScheduleItem],
        date_range: DateRange,
    ) -> Dict[CountKey, int]:
        """Number of items per (day, stylist); days outside the range are ignored."""
        counter: Counter = Counter(
            (item.date, item.resource_id)
            for item in items
            if item.date in date_range
        )
        return dict(counter)

    def items_on_date(self, items: Iterable[ScheduleItem], day: date) -> List[ScheduleItem]:
        """Items of one day ordered by stylist id, then start time."""
        day = as_date(day)
        return sorted(
            (item for item in items if item.date == day),
            key=lambda item: (item.resource_id, item.start_minutes, item.id),
        )

    def peek(self, items: Iterable[ScheduleItem], day: date, limit: int = 3) -> List[ScheduleItem]:
        """The first ``limit`` items of a day by start time, for a month cell preview."""
        day = as_date(day)
        ordered = sorted(
            (item for item in items if item.date == day),
            key=lambda item: (item.start_minutes, item.resource_id, item.id),
        )
        return ordered[:max(limit, 0)]

    def dots_for_date(
        self,
        counts: Dict[CountKey, int],
        day: date,
        roster: ResourceRoster,
    ) -> List[Tuple[str, int]]:
        """
        Per-stylist counts for one month cell, in roster order.

        Stylists without items on that day are left out.
        """
        day = as_date(day)
        dots: List[Tuple[str, int]] = []
        for resource in roster:
            count = counts.get((day, resource.id), 0)
            if count:
                dots.append((resource.id, count))
        return dots

    @staticmethod
    def week_dates(anchor: date) -> List[Date]:
        """Monday to Sunday of the week containing ``anchor``."""
        return DateRange.week_of(anchor).days()

    @staticmethod
    def month_grid(year: int, month: int) -> List[List[Optional[Date]]]:
        """
        Calendar weeks of a month, Monday first.

        Cells before the first and after the last day of the month are None.
        """
        first = pendulum.date(year, month, 1)
        leading_blanks = int(first.day_of_week)  # Monday == 0
        cells: List[Optional[Date]] = [None] * leading_blanks
        cells.extend(first.add(days=offset) for offset in range(first.days_in_month))
        cells.extend([None] * (-len(cells) % 7))
        return [cells[start:start + 7] for start in range(0, len(cells), 7)]

    def month_summary(
        self,
        items: Iterable[ScheduleItem],
        year: int,
        month: int,
    ) -> MonthSummary:
        return MonthSummary(
            year=year,
            month=month,
            weeks=self.month_grid(year, month),
            counts=self.counts_by_resource_and_date(items, DateRange.month_of(year, month)),
        )
