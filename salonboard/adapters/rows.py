"""
Conversion between store rows (plain dicts) and domain models.
"""

import logging
from typing import Any, Dict, Iterable, List

import pendulum
from pendulum import DateTime

from ..domain.exceptions import ValidationError
from ..domain.models import ItemKind, Resource, ScheduleItem

logger = logging.getLogger(__name__)

# Bookings in any other status (e.g. cancelled) are not part of the schedule.
ACTIVE_STATUSES = ("pending", "confirmed")


def resource_from_row(row: Dict[str, Any]) -> Resource:
    """
    Build a stylist from a ``{id, name, color}`` row.

    An invalid colour is kept as-is; the roster replaces it from the palette.
    """
    try:
        resource_id = row["id"]
    except KeyError as exc:
        raise ValidationError(f"Stylist row without id: {row!r}") from exc
    return Resource(
        id=str(resource_id),
        name=str(row.get("name") or "Stylist"),
        color=row.get("color"),
    )


def is_active_row(row: Dict[str, Any]) -> bool:
    status = row.get("status")
    return status is None or str(status).lower() in ACTIVE_STATUSES


def item_from_row(row: Dict[str, Any], timezone: str = "Europe/Berlin") -> ScheduleItem:
    """
    Build a schedule item from a store row.

    Accepted columns:
        id, stylist_id | resource_id,
        date + start_time  or  start_datetime (ISO 8601),
        duration | duration_minutes,
        label | client | first_name + last_name,
        subtitle | service | service_name,
        kind

    Raises:
        ValidationError: If a required column is missing or malformed
    """
    try:
        resource_id = row.get("resource_id", row.get("stylist_id"))
        if resource_id is None:
            raise KeyError("stylist_id")

        if row.get("start_datetime"):
            start = _parse_datetime(str(row["start_datetime"]), timezone)
            day, start_time = start.date(), start.time()
        else:
            day, start_time = row["date"], row["start_time"]

        duration = row.get("duration_minutes", row.get("duration"))
        if duration is None:
            raise KeyError("duration")

        return ScheduleItem(
            id=str(row["id"]),
            resource_id=str(resource_id),
            date=day,
            start_time=start_time,
            duration_minutes=int(duration),
            label=_label(row),
            subtitle=str(row.get("subtitle") or row.get("service") or row.get("service_name") or ""),
            kind=row.get("kind") or ItemKind.BOOKING,
            persisted=True,
        )
    except ValidationError:
        raise
    except KeyError as exc:
        raise ValidationError(f"Schedule row is missing column {exc}: {row!r}") from exc
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Malformed schedule row {row!r}: {exc}") from exc


def items_from_rows(rows: Iterable[Dict[str, Any]], timezone: str = "Europe/Berlin") -> List[ScheduleItem]:
    """Convert rows, skipping inactive bookings and rows that cannot be parsed."""
    items: List[ScheduleItem] = []
    for row in rows:
        if not is_active_row(row):
            continue
        try:
            items.append(item_from_row(row, timezone))
        except ValidationError as exc:
            logger.warning("Skipping schedule row: %s", exc)
    return items


def item_to_row(item: ScheduleItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "stylist_id": item.resource_id,
        "date": item.date.to_date_string(),
        "start_time": item.start_time.strftime("%H:%M"),
        "duration": item.duration_minutes,
        "label": item.label,
        "subtitle": item.subtitle,
        "kind": item.kind.value,
    }


def _label(row: Dict[str, Any]) -> str:
    label = row.get("label") or row.get("client")
    if label:
        return str(label)
    name_parts = [row.get("first_name"), row.get("last_name")]
    return " ".join(str(part) for part in name_parts if part)


def _parse_datetime(value: str, timezone: str) -> DateTime:
    """Parse an ISO timestamp and express it in the salon's timezone."""
    parsed = pendulum.parse(value, tz=timezone)
    if isinstance(parsed, DateTime):
        return parsed.in_timezone(timezone)
    raise ValueError(f"Could not parse datetime: {value}")
