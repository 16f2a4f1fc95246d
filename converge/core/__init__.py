"""
Converge Core - Errors, shared types, metrics and resilience helpers.
"""

from converge.core.exceptions import (
    ApplyError,
    ConfigurationError,
    ConvergeError,
    CyclicDependencyError,
    DeclarationError,
    DuplicateResourceError,
    GraphError,
    PersistenceError,
    PlanConflictError,
    PlanError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    ResourceNotFoundError,
    UnknownResourceKindError,
    UnresolvedReferenceError,
)
from converge.core.types import ChangeAction, ItemAction, ItemStatus, RunStatus

__all__ = [
    "ApplyError",
    "ChangeAction",
    "ConfigurationError",
    "ConvergeError",
    "CyclicDependencyError",
    "DeclarationError",
    "DuplicateResourceError",
    "GraphError",
    "ItemAction",
    "ItemStatus",
    "PersistenceError",
    "PlanConflictError",
    "PlanError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "ResourceNotFoundError",
    "RunStatus",
    "UnknownResourceKindError",
    "UnresolvedReferenceError",
]
