"""
Converge State - Resource state tracking.

Observed state of applied resources and its SQLite persistence.
"""

from converge.state.models import ResourceState
from converge.state.repository import StateRepository
from converge.state.store import StateStore

__all__ = [
    "ResourceState",
    "StateRepository",
    "StateStore",
]
