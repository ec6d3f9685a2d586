"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .schedule_board import ScheduleBoardService, SchedulingStoreProtocol

__all__ = ["ScheduleBoardService", "SchedulingStoreProtocol"]
