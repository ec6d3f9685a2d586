"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .conflict_detector import ConflictDetector
from .exceptions import (
    ConfigError,
    InvalidTargetError,
    NotFoundError,
    PersistenceFailure,
    SchedulingError,
    StoreError,
    ValidationError,
)
from .layout_engine import ColumnLayout, ItemLayout, LayoutEngine, PlacedItem
from .models import DateRange, ItemKind, Resource, ResourceRoster, ScheduleItem, TimeGrid
from .mutation_engine import Mutation, MutationEngine, MutationKind
from .view_aggregator import MonthSummary, ViewAggregator

__all__ = [
    "ColumnLayout",
    "ConfigError",
    "ConflictDetector",
    "DateRange",
    "InvalidTargetError",
    "ItemKind",
    "ItemLayout",
    "LayoutEngine",
    "MonthSummary",
    "Mutation",
    "MutationEngine",
    "MutationKind",
    "NotFoundError",
    "PersistenceFailure",
    "PlacedItem",
    "Resource",
    "ResourceRoster",
    "ScheduleItem",
    "SchedulingError",
    "StoreError",
    "TimeGrid",
    "ValidationError",
    "ViewAggregator",
]
