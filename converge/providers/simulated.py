"""
Converge Providers - Simulated cloud.

An in-memory stand-in for a cloud API covering the kinds needed to stand
up a single web server (network, subnet, gateway, route table, security
group, key pair, instance). Objects can be persisted to a JSON file so
separate CLI runs see the same "remote" side.

Supports fault injection for testing partial failure and retries:

    cloud.inject_failure("instance", "create", ProviderTransientError("throttled"), times=2)
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
from collections import defaultdict, deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from converge.core.exceptions import (
    ProviderError,
    ProviderPermanentError,
    ResourceNotFoundError,
)
from converge.providers.base import ProviderRegistry, ResourceSchema

# kind -> (id prefix, schema)
SIMULATED_KINDS: dict[str, tuple[str, ResourceSchema]] = {
    "network": ("vpc", ResourceSchema(
        replace_fields=frozenset({"cidr_block"}),
        computed_fields=frozenset({"id", "arn"}),
    )),
    "subnet": ("subnet", ResourceSchema(
        replace_fields=frozenset({"network_id", "cidr_block", "availability_zone"}),
        computed_fields=frozenset({"id", "arn"}),
    )),
    "internet_gateway": ("igw", ResourceSchema(
        replace_fields=frozenset({"network_id"}),
        computed_fields=frozenset({"id", "arn"}),
    )),
    "route_table": ("rtb", ResourceSchema(
        replace_fields=frozenset({"network_id"}),
        computed_fields=frozenset({"id", "arn"}),
    )),
    "security_group": ("sg", ResourceSchema(
        replace_fields=frozenset({"network_id", "name", "description"}),
        unique_fields=frozenset({"name"}),
        computed_fields=frozenset({"id", "arn"}),
    )),
    "key_pair": ("key", ResourceSchema(
        replace_fields=frozenset({"key_name", "public_key"}),
        unique_fields=frozenset({"key_name"}),
        computed_fields=frozenset({"id", "arn", "fingerprint"}),
    )),
    "instance": ("i", ResourceSchema(
        replace_fields=frozenset({"image_id", "subnet_id", "key_name", "user_data"}),
        computed_fields=frozenset({"id", "arn", "public_ip", "private_ip"}),
    )),
}


@dataclass
class _Fault:
    error: BaseException
    remaining: int


@dataclass
class SimulatedCloud:
    """
    The "remote side": every live object across all kinds.

    Attributes:
        path: Optional JSON file the objects are persisted to
        latency: Seconds each call sleeps (lets tests observe concurrency)
    """

    path: Path | None = None
    latency: float = 0.0
    objects: dict[str, dict[str, Any]] = field(default_factory=dict)
    calls: list[tuple[str, str, str]] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0
    _counter: int = 0
    _faults: dict[tuple[str, str], deque[_Fault]] = field(
        default_factory=lambda: defaultdict(deque)
    )

    def __post_init__(self) -> None:
        if self.path is not None and self.path.exists():
            data = json.loads(self.path.read_text(encoding="utf-8"))
            self.objects = data.get("objects", {})
            self._counter = data.get("counter", 0)

    def inject_failure(self, kind: str, operation: str, error: BaseException, times: int = 1) -> None:
        """Make the next `times` calls of kind/operation raise error."""
        self._faults[(kind, operation)].append(_Fault(error, times))

    def next_id(self, prefix: str) -> str:
        self._counter += 1
        digest = hashlib.sha1(f"{prefix}-{self._counter}".encode()).hexdigest()[:12]
        return f"{prefix}-{digest}"

    def objects_of(self, kind: str) -> dict[str, dict[str, Any]]:
        return {rid: obj["attributes"] for rid, obj in self.objects.items() if obj["kind"] == kind}

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps({"objects": self.objects, "counter": self._counter}, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        tmp.replace(self.path)

    async def enter(self, kind: str, operation: str, target: str) -> None:
        """Record a call, apply latency, and raise an injected fault if queued."""
        self.calls.append((kind, operation, target))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            faults = self._faults.get((kind, operation))
            if faults:
                fault = faults[0]
                fault.remaining -= 1
                if fault.remaining <= 0:
                    faults.popleft()
                raise fault.error
        finally:
            self.in_flight -= 1


class SimulatedResource:
    """ResourceProvider for one kind of the simulated cloud."""

    def __init__(self, kind: str, cloud: SimulatedCloud, prefix: str, schema: ResourceSchema):
        self.kind = kind
        self.cloud = cloud
        self.prefix = prefix
        self.schema = schema

    def _computed(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {
            "id": remote_id,
            "arn": f"arn:sim:{self.kind}/{remote_id}",
        }
        if self.kind == "instance":
            octet = int(hashlib.sha1(remote_id.encode()).hexdigest()[:2], 16)
            values["private_ip"] = f"10.0.1.{octet}"
            values["public_ip"] = f"198.51.100.{octet}"
        elif self.kind == "key_pair":
            material = str(attributes.get("public_key", ""))
            values["fingerprint"] = hashlib.md5(material.encode()).hexdigest()
        return values

    def _check_unique(self, attributes: dict[str, Any], exclude: str | None = None) -> None:
        for field_name in self.schema.unique_fields:
            value = attributes.get(field_name)
            if value is None:
                continue
            for rid, existing in self.cloud.objects_of(self.kind).items():
                if rid != exclude and existing.get(field_name) == value:
                    raise ProviderPermanentError(
                        f"{self.kind} {field_name} '{value}' already in use by {rid}",
                        operation="create",
                    )

    def _get(self, remote_id: str, operation: str) -> dict[str, Any]:
        obj = self.cloud.objects.get(remote_id)
        if obj is None or obj["kind"] != self.kind:
            raise ResourceNotFoundError(
                f"{self.kind} {remote_id} does not exist", operation=operation
            )
        return obj

    async def create(self, attributes: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        await self.cloud.enter(self.kind, "create", "")
        self._check_unique(attributes)

        remote_id = self.cloud.next_id(self.prefix)
        observed = {**copy.deepcopy(attributes), **self._computed(remote_id, attributes)}
        self.cloud.objects[remote_id] = {"kind": self.kind, "attributes": observed}
        self.cloud.save()
        logger.debug(f"[sim] created {self.kind} {remote_id}")
        return remote_id, copy.deepcopy(observed)

    async def read(self, remote_id: str) -> dict[str, Any]:
        await self.cloud.enter(self.kind, "read", remote_id)
        return copy.deepcopy(self._get(remote_id, "read")["attributes"])

    async def update(self, remote_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        await self.cloud.enter(self.kind, "update", remote_id)
        obj = self._get(remote_id, "update")

        current = obj["attributes"]
        for field_name in self.schema.replace_fields:
            if field_name in attributes and attributes[field_name] != current.get(field_name):
                raise ProviderPermanentError(
                    f"{self.kind} field '{field_name}' cannot be changed in place",
                    operation="update",
                )
        self._check_unique(attributes, exclude=remote_id)

        computed = {k: v for k, v in current.items() if k in self.schema.computed_fields}
        observed = {**copy.deepcopy(attributes), **computed}
        obj["attributes"] = observed
        self.cloud.save()
        return copy.deepcopy(observed)

    async def delete(self, remote_id: str) -> None:
        await self.cloud.enter(self.kind, "delete", remote_id)
        self._get(remote_id, "delete")

        dependents = [
            rid for rid, other in self.cloud.objects.items()
            if rid != remote_id and remote_id in json.dumps(other["attributes"])
        ]
        if dependents:
            raise ProviderError(
                f"{self.kind} {remote_id} is still referenced by {', '.join(sorted(dependents))}",
                operation="delete",
            )

        del self.cloud.objects[remote_id]
        self.cloud.save()
        logger.debug(f"[sim] deleted {self.kind} {remote_id}")


def build_registry(
    data_dir: Path | None = None,
    cloud: SimulatedCloud | None = None,
) -> ProviderRegistry:
    """
    Registry with a SimulatedResource for every simulated kind.

    Args:
        data_dir: Directory for the persisted cloud file (in-memory if None)
        cloud: Existing SimulatedCloud to share (takes precedence)
    """
    if cloud is None:
        from converge.config.constants import SIMULATED_CLOUD_FILE

        cloud = SimulatedCloud(path=data_dir / SIMULATED_CLOUD_FILE if data_dir else None)

    registry = ProviderRegistry()
    for kind, (prefix, schema) in SIMULATED_KINDS.items():
        registry.register(kind, SimulatedResource(kind, cloud, prefix, schema))
    return registry
