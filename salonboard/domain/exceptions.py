"""
Domain-specific exception hierarchy for the scheduling core.

Overlapping items are not an error anywhere in this hierarchy; conflicts are
reported as state by the ConflictDetector.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .mutation_engine import Mutation


class SchedulingError(Exception):
    """Base class for all application-level errors."""


class ValidationError(SchedulingError, ValueError):
    """Raised when input is rejected before it enters the working set."""


class ConfigError(SchedulingError, ValueError):
    """Raised when the configuration file cannot be loaded or is invalid."""


class NotFoundError(SchedulingError, LookupError):
    """Raised when a mutation references an item id absent from the working set."""

    def __init__(self, item_id: str):
        super().__init__(f"Schedule item not found: {item_id}")
        self.item_id = item_id


class InvalidTargetError(SchedulingError):
    """Raised when an item is assigned to a resource that is not in the roster."""

    def __init__(self, resource_id: str):
        super().__init__(f"Unknown stylist: {resource_id}")
        self.resource_id = resource_id


class StoreError(SchedulingError):
    """Raised by store adapters when data cannot be fetched or persisted."""


class PersistenceFailure(SchedulingError):
    """
    The store rejected or failed to confirm a locally applied mutation.

    The local change has already been rolled back (if it was still the latest
    change to that item). ``mutation`` holds the intended change so the caller
    can offer a retry.
    """

    def __init__(self, mutation: "Mutation", message: str, retryable: bool = True):
        super().__init__(message)
        self.mutation: "Mutation" = mutation
        self.retryable = retryable
        self.rolled_back: Optional[bool] = None
