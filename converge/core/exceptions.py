"""
Core Exceptions - Unified error hierarchy for Converge.

Follows SRP: each exception type handles one category of errors.
Graph, diff and plan errors are raised before any provider call is made;
provider errors are captured per plan item by the executor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from converge.engine.report import ApplyReport
    from converge.model.resources import ResourceId


class ConvergeError(Exception):
    """Base exception for all Converge errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ConvergeError):
    """Configuration or declaration error."""
    pass


class InvalidConfigError(ConfigurationError):
    """Invalid configuration value."""
    pass


class DeclarationError(ConfigurationError):
    """Declaration document could not be parsed."""
    pass


class DuplicateResourceError(DeclarationError):
    """The same resource identity was declared twice."""

    def __init__(self, resource: ResourceId):
        super().__init__(
            f"Resource '{resource}' is declared more than once",
            {"resource": str(resource)}
        )
        self.resource = resource


class UnknownResourceKindError(ConfigurationError):
    """No provider is registered for a resource kind."""

    def __init__(self, kind: str, available: list[str] | None = None):
        super().__init__(
            f"No provider registered for resource kind '{kind}'",
            {"kind": kind, "available": sorted(available or [])}
        )
        self.kind = kind


# =============================================================================
# Graph Errors
# =============================================================================

class GraphError(ConvergeError):
    """Dependency graph could not be built."""
    pass


class CyclicDependencyError(GraphError):
    """Declarations reference each other in a cycle."""

    def __init__(self, members: list[ResourceId]):
        names = [str(m) for m in members]
        super().__init__(
            f"Dependency cycle between: {', '.join(names)}",
            {"members": names}
        )
        self.members = list(members)


class UnresolvedReferenceError(GraphError):
    """A reference points at a resource that is not declared."""

    def __init__(self, source: ResourceId, target: ResourceId, path: str = ""):
        target_desc = f"{target}.{path}" if path else str(target)
        super().__init__(
            f"Resource '{source}' references undeclared '{target_desc}'",
            {"source": str(source), "target": str(target)}
        )
        self.source = source
        self.target = target


# =============================================================================
# Planning Errors
# =============================================================================

class PlanError(ConvergeError):
    """Planning failed."""
    pass


class PlanConflictError(PlanError):
    """Plan ordering constraints contradict each other."""

    def __init__(self, members: list[str]):
        super().__init__(
            f"Contradictory ordering constraints between: {', '.join(members)}",
            {"members": members}
        )
        self.members = members


# =============================================================================
# Provider Errors
# =============================================================================

class ProviderError(ConvergeError):
    """Error delegated from a provider call."""

    def __init__(
        self,
        message: str,
        resource: str | None = None,
        operation: str | None = None,
        details: dict | None = None,
    ):
        merged: dict[str, Any] = dict(details or {})
        if resource:
            merged["resource"] = resource
        if operation:
            merged["operation"] = operation
        super().__init__(message, merged)
        self.resource = resource
        self.operation = operation


class ProviderTransientError(ProviderError):
    """Retryable failure (throttling, timeouts, eventual consistency)."""
    pass


class ProviderPermanentError(ProviderError):
    """Non-retryable failure, or a transient failure that exhausted retries."""
    pass


class ResourceNotFoundError(ProviderError):
    """The remote object does not exist."""
    pass


# =============================================================================
# Persistence / Apply Errors
# =============================================================================

class PersistenceError(ConvergeError):
    """State store operation failed.

    Use this for transactional failures where state could not be saved.
    """

    def __init__(self, operation: str, reason: str, details: dict | None = None):
        super().__init__(
            f"Persistence error during {operation}: {reason}",
            {**(details or {}), "operation": operation, "reason": reason}
        )
        self.operation = operation
        self.reason = reason


class ApplyError(ConvergeError):
    """An apply run did not complete successfully."""

    def __init__(self, report: ApplyReport):
        failed = report.failed_item
        reason = failed.error if failed and failed.error else "run did not complete"
        super().__init__(
            f"Apply failed: {reason}",
            {"succeeded": len(report.succeeded), "not_attempted": len(report.not_attempted)}
        )
        self.report = report
