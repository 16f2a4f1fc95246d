"""
Converge Core - Shared types and enums.
"""

from __future__ import annotations

from enum import StrEnum


class ChangeAction(StrEnum):
    """Per-resource reconciliation decision."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DESTROY = "destroy"
    NOOP = "no-op"


class ItemAction(StrEnum):
    """Action carried out by a single plan item (replace is expanded)."""

    CREATE = "create"
    UPDATE = "update"
    DESTROY = "destroy"
    NOOP = "no-op"


class ItemStatus(StrEnum):
    """Outcome of a plan item within an apply run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"
    CANCELLED = "cancelled"


class RunStatus(StrEnum):
    """Outcome of a whole apply run."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"  # Some items applied, then a failure halted the run
    FAILED = "failed"  # First attempted item failed
    CANCELLED = "cancelled"
