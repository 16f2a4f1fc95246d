"""
Converge Providers - Capability interface and registry.

A provider implements the four CRUD operations for one resource kind.
Providers are looked up per kind in a `ProviderRegistry` table; the engine
never depends on a concrete implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from loguru import logger

from converge.core.exceptions import UnknownResourceKindError


@dataclass(frozen=True)
class ResourceSchema:
    """
    Attribute semantics of one resource kind.

    Attributes:
        replace_fields: Changing any of these requires destroy + create
        unique_fields: Values that name the remote object; two live objects
            of the kind may not share them
        computed_fields: Provider-assigned outputs never set by declarations
    """

    replace_fields: frozenset[str] = frozenset()
    unique_fields: frozenset[str] = frozenset()
    computed_fields: frozenset[str] = frozenset({"id"})

    def requires_replacement(self, field: str) -> bool:
        return field in self.replace_fields


@runtime_checkable
class ResourceProvider(Protocol):
    """CRUD capability for one resource kind.

    Errors are signalled with ProviderTransientError, ProviderPermanentError
    or ResourceNotFoundError.
    """

    schema: ResourceSchema

    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        """Create the object; return (remote_id, observed attributes)."""
        ...

    async def read(self, remote_id: str) -> dict[str, Any]:
        """Return observed attributes (ResourceNotFoundError if gone)."""
        ...

    async def update(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update mutable attributes in place; return observed attributes."""
        ...

    async def delete(self, remote_id: str) -> None:
        """Delete the object (ResourceNotFoundError if already gone)."""
        ...


class ProviderRegistry:
    """
    Lookup table of providers keyed by resource kind.

    Usage:
        registry = ProviderRegistry()
        registry.register("network", NetworkProvider(client))
        provider = registry.get("network")
    """

    def __init__(self) -> None:
        self._providers: dict[str, ResourceProvider] = {}

    def register(self, kind: str, provider: ResourceProvider) -> None:
        """
        Register the provider for a resource kind.

        Args:
            kind: Resource kind (e.g., "network")
            provider: Object implementing ResourceProvider
        """
        if not isinstance(provider, ResourceProvider):
            raise TypeError(f"Provider for '{kind}' does not implement ResourceProvider")
        if kind in self._providers:
            logger.warning(f"Provider for '{kind}' already registered, overwriting")

        self._providers[kind] = provider
        logger.debug(f"Registered provider: {kind}")

    def get(self, kind: str) -> ResourceProvider:
        """
        Get the provider for a kind.

        Raises:
            UnknownResourceKindError: If no provider is registered
        """
        try:
            return self._providers[kind]
        except KeyError:
            raise UnknownResourceKindError(kind, self.list_all()) from None

    def schema(self, kind: str) -> ResourceSchema:
        return self.get(kind).schema

    def has(self, kind: str) -> bool:
        return kind in self._providers

    def __contains__(self, kind: object) -> bool:
        return kind in self._providers

    def list_all(self) -> list[str]:
        """List all registered kinds."""
        return list(self._providers.keys())

    def clear(self) -> None:
        """Remove all providers (useful for testing)."""
        self._providers.clear()
