"""
Adapters layer - External integrations (scheduling backend, mock data).
"""

from .mock_store import MockSchedulingStore
from .rest_store import RestSchedulingStore

__all__ = ["MockSchedulingStore", "RestSchedulingStore"]
