"""
Converge State - Models.

Last observed state of a resource, keyed by its declaration identity.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from converge.model.resources import ResourceId


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ResourceState:
    """
    Observed state of one resource.

    Attributes:
        resource_id: Declaration identity
        remote_id: Provider-assigned identifier of the live object
        attributes: Attribute snapshot reported by the provider
        inputs: Resolved declared attributes as last applied
        dependencies: Identities this resource depended on when applied
        deposed: Remote ids of replaced objects still awaiting deletion
    """

    resource_id: ResourceId
    remote_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    inputs: dict[str, Any] = field(default_factory=dict)
    dependencies: list[ResourceId] = field(default_factory=list)
    deposed: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def kind(self) -> str:
        return self.resource_id.kind

    def copy(self) -> ResourceState:
        """Deep copy, so callers never share mutable attribute dicts."""
        return replace(
            self,
            attributes=copy.deepcopy(self.attributes),
            inputs=copy.deepcopy(self.inputs),
            dependencies=list(self.dependencies),
            deposed=list(self.deposed),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": str(self.resource_id),
            "remote_id": self.remote_id,
            "attributes": copy.deepcopy(self.attributes),
            "inputs": copy.deepcopy(self.inputs),
            "dependencies": [str(d) for d in self.dependencies],
            "deposed": list(self.deposed),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
