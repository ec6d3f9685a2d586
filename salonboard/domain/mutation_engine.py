"""
State machine behind drag-and-drop, duplication and deletion.

The engine owns the working set of one calendar page (a day, a week or the
dates visible in a month grid). Mutations are applied locally and
immediately; persisting them is the caller's job. Every mutation returns a
``Mutation`` record holding the pre-mutation snapshot so a failed
persistence call can be rolled back exactly.
"""

import itertools
import logging
from dataclasses import dataclass, replace
from datetime import date, time
from enum import Enum
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

import pendulum

from .conflict_detector import ConflictDetector
from .exceptions import InvalidTargetError, NotFoundError, ValidationError
from .models import ItemKind, ResourceRoster, ScheduleItem, as_date, as_time, time_from_minutes

logger = logging.getLogger(__name__)

LOCAL_ID_PREFIX = "local-"


class MutationKind(str, Enum):
    CREATE = "create"
    MOVE = "move"
    DUPLICATE = "duplicate"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """
    One applied change to the working set.

    ``before`` is None for creations, ``after`` is None for deletions.
    ``sequence`` increases with every mutation the engine applies.
    """
    kind: MutationKind
    item_id: str
    before: Optional[ScheduleItem]
    after: Optional[ScheduleItem]
    sequence: int

    @property
    def item(self) -> ScheduleItem:
        """The resulting item, or the removed one for a deletion."""
        return self.after if self.after is not None else self.before

    @property
    def is_noop(self) -> bool:
        return self.before is not None and self.before == self.after


def default_id_factory() -> Callable[[], str]:
    """Timestamp-derived local ids; the counter keeps ids unique within one millisecond."""
    counter = itertools.count(1)

    def next_id() -> str:
        millis = int(pendulum.now("UTC").timestamp() * 1000)
        return f"{LOCAL_ID_PREFIX}{millis}-{next(counter)}"

    return next_id


class MutationEngine:
    """
    Applies create/move/duplicate/delete to an in-memory working set.

    Conflicts are never a reason to reject a mutation: double booking is a
    valid business operation and is only surfaced through ``conflicts()``.
    """

    def __init__(
        self,
        roster: ResourceRoster,
        items: Iterable[ScheduleItem] = (),
        id_factory: Optional[Callable[[], str]] = None,
        detector: Optional[ConflictDetector] = None,
    ):
        self.roster = roster
        self._items: Dict[str, ScheduleItem] = {}
        for item in items:
            if item.id in self._items:
                raise ValidationError(f"Duplicate schedule item id in working set: {item.id}")
            self._items[item.id] = item
        self._id_factory = id_factory or default_id_factory()
        self._detector = detector or ConflictDetector()
        self._sequence = itertools.count(1)
        # item id -> latest mutation that touched it
        self._latest: Dict[str, Mutation] = {}
        # sequence -> mutation that was latest for the item before it
        self._previous: Dict[int, Mutation] = {}
        # local id -> id assigned by the store
        self._aliases: Dict[str, str] = {}

    # --- Working set ----------------------------------------------------------

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[ScheduleItem]:
        return iter(list(self._items.values()))

    @property
    def items(self) -> List[ScheduleItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> ScheduleItem:
        try:
            return self._items[self.resolve(item_id)]
        except KeyError:
            raise NotFoundError(item_id) from None

    def resolve(self, item_id: str) -> str:
        """Current id of an item; local ids map to the id the store assigned."""
        return self._aliases.get(item_id, item_id)

    def conflicts(self) -> Dict[str, Set[str]]:
        return self._detector.find_conflicts(self._items.values())

    def snapshot(self, item_id: str) -> Optional[ScheduleItem]:
        """Pre-mutation state of the latest mutation that touched ``item_id``."""
        mutation = self._latest.get(self.resolve(item_id))
        return mutation.before if mutation else None

    # --- Mutations ------------------------------------------------------------

    def create(
        self,
        resource_id: str,
        date: date,
        start_time: time,
        duration_minutes: int,
        *,
        label: str = "",
        subtitle: str = "",
        kind: ItemKind = ItemKind.BOOKING,
        item_id: Optional[str] = None,
    ) -> Mutation:
        """
        Add a new item to the working set.

        Without ``item_id`` the item gets a local id and is marked as not yet
        persisted.
        """
        self._require_positive_duration(duration_minutes)
        self._require_resource(resource_id)
        if item_id is not None and item_id in self._items:
            raise ValidationError(f"Schedule item id already in use: {item_id}")

        item = ScheduleItem(
            id=item_id or self._new_id(),
            resource_id=resource_id,
            date=as_date(date),
            start_time=as_time(start_time),
            duration_minutes=duration_minutes,
            label=label,
            subtitle=subtitle,
            kind=kind,
            persisted=item_id is not None,
        )
        self._items[item.id] = item
        return self._record(MutationKind.CREATE, item.id, None, item)

    def move(
        self,
        item_id: str,
        resource_id: str,
        start_time: time,
        *,
        date: Optional[date] = None,
    ) -> Mutation:
        """
        Reassign an item to a stylist and an already-quantised start time.

        ``date`` moves the item to another day as well (week board drag).
        The duration is never changed. An unknown stylist leaves the item
        where it was.
        """
        before = self.get(item_id)
        item_id = before.id
        self._require_resource(resource_id)

        changes = {"resource_id": resource_id, "start_time": as_time(start_time)}
        if date is not None:
            changes["date"] = as_date(date)
        after = replace(before, **changes)

        if after == before:
            logger.debug("Move of %s is a no-op", item_id)
            return Mutation(MutationKind.MOVE, item_id, before, before, self._latest_sequence(item_id))

        self._items[item_id] = after
        return self._record(MutationKind.MOVE, item_id, before, after)

    def duplicate(self, item_id: str) -> Mutation:
        """
        Clone an item directly after itself on the same stylist and day.

        The new start is the source start plus its duration, wrapping past
        midnight onto the same day. Times outside the visible grid are kept;
        clamping is a display concern.
        """
        source = self.get(item_id)
        clone = replace(
            source,
            id=self._new_id(),
            start_time=time_from_minutes(source.end_minutes),
            persisted=False,
        )
        self._items[clone.id] = clone
        return self._record(MutationKind.DUPLICATE, clone.id, None, clone)

    def delete(self, item_id: str, *, missing_ok: bool = True) -> Optional[Mutation]:
        """
        Remove an item from the working set.

        Deleting an absent id returns None (or raises NotFoundError when
        ``missing_ok`` is False), so repeated deletes are harmless.
        """
        item_id = self.resolve(item_id)
        before = self._items.pop(item_id, None)
        if before is None:
            if not missing_ok:
                raise NotFoundError(item_id)
            logger.debug("Delete of %s ignored: not in working set", item_id)
            return None
        return self._record(MutationKind.DELETE, item_id, before, None)

    # --- Persistence protocol -------------------------------------------------

    def is_current(self, mutation: Mutation) -> bool:
        """True if no later mutation has touched the same item."""
        latest = self._latest.get(self.resolve(mutation.item_id))
        return latest is not None and latest.sequence == mutation.sequence

    def rollback(self, mutation: Mutation) -> bool:
        """
        Undo a mutation by restoring its pre-mutation snapshot.

        Only the latest mutation of an item can be rolled back; a superseded
        one returns False and leaves the working set untouched. If the item
        has been stored under a new id since, the snapshot is restored under
        that id.
        """
        if mutation.is_noop:
            return True
        if not self.is_current(mutation):
            logger.warning(
                "Not rolling back %s of %s: superseded by a later change",
                mutation.kind.value, mutation.item_id,
            )
            return False

        item_id = self.resolve(mutation.item_id)
        if mutation.before is None:
            self._items.pop(item_id, None)
        else:
            self._items[item_id] = self._rebind(mutation.before)
        previous = self._previous.pop(mutation.sequence, None)
        if previous is None:
            del self._latest[item_id]
        else:
            self._latest[item_id] = previous
        logger.debug("Rolled back %s of %s", mutation.kind.value, item_id)
        return True

    def confirm(self, mutation: Mutation, persisted: Optional[ScheduleItem] = None) -> bool:
        """
        Apply the store's answer to a mutation.

        A store-assigned id always replaces the local one, even if the item
        has been deleted locally meanwhile, so later mutations that still
        carry the local id resolve to it. The stored fields are only adopted
        while the mutation is still the latest for the item, so a slow
        response never overwrites a newer local change. Returns whether the
        mutation was current.
        """
        current = self.is_current(mutation)
        if persisted is None or mutation.after is None:
            return current

        item_id = self.resolve(mutation.item_id)
        if persisted.id != item_id:
            self._aliases[item_id] = self._aliases[mutation.item_id] = persisted.id
            if item_id in self._items:
                local = self._items.pop(item_id)
                self._items[persisted.id] = replace(local, id=persisted.id, persisted=True)
            if item_id in self._latest:
                latest = self._latest.pop(item_id)
                self._latest[persisted.id] = replace(latest, item_id=persisted.id)
            logger.debug("Local item %s stored as %s", item_id, persisted.id)
            item_id = persisted.id

        if current and item_id in self._items:
            self._items[item_id] = replace(persisted, persisted=True)
        return current

    def reapply(self, mutation: Mutation) -> Mutation:
        """Apply the intended state of a failed mutation again (retry)."""
        if mutation.kind is MutationKind.DELETE:
            removed = self.delete(mutation.item_id)
            if removed is None:
                item_id = self.resolve(mutation.item_id)
                return Mutation(MutationKind.DELETE, item_id, mutation.before, None,
                                self._latest_sequence(item_id))
            return removed

        target = self._rebind(mutation.after)
        self._require_resource(target.resource_id)
        before = self._items.get(target.id)
        self._items[target.id] = target
        kind = mutation.kind if before is None else MutationKind.MOVE
        return self._record(kind, target.id, before, target)

    # --- Internals ------------------------------------------------------------

    def _record(
        self,
        kind: MutationKind,
        item_id: str,
        before: Optional[ScheduleItem],
        after: Optional[ScheduleItem],
    ) -> Mutation:
        mutation = Mutation(kind, item_id, before, after, next(self._sequence))
        previous = self._latest.get(item_id)
        if previous is not None:
            self._previous[mutation.sequence] = previous
        self._latest[item_id] = mutation
        logger.debug("Applied %s of %s (#%d)", kind.value, item_id, mutation.sequence)
        return mutation

    def _rebind(self, item: ScheduleItem) -> ScheduleItem:
        """A snapshot taken under a local id, re-keyed to the store id if there is one."""
        item_id = self.resolve(item.id)
        if item_id == item.id:
            return item
        return replace(item, id=item_id, persisted=True)

    def _latest_sequence(self, item_id: str) -> int:
        latest = self._latest.get(item_id)
        return latest.sequence if latest else 0

    def _new_id(self) -> str:
        item_id = self._id_factory()
        while item_id in self._items:
            item_id = self._id_factory()
        return item_id

    def _require_resource(self, resource_id: str) -> None:
        if resource_id not in self.roster:
            raise InvalidTargetError(resource_id)

    @staticmethod
    def _require_positive_duration(duration_minutes: int) -> None:
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise ValidationError(f"Duration must be whole minutes, got {duration_minutes!r}")
        if duration_minutes <= 0:
            raise ValidationError(f"Duration must be positive, got {duration_minutes}")
