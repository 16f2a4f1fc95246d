"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

from converge.config import reset_config
from converge.config.models import EngineConfig, RetryConfig
from converge.core.metrics import reset_metrics
from converge.engine import Engine
from converge.engine.graph import build_graph
from converge.model import declarations_from_dict
from converge.model.resources import ResourceId, substitute
from converge.providers import SimulatedCloud, build_registry
from converge.state import StateRepository, StateStore
from converge.state.models import ResourceState
from converge.utils.log_config import reset_log_config
from converge.utils.security import clear_registered_secrets

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from converge.model.resources import Declarations
    from converge.providers import ProviderRegistry

pytest_plugins = ("pytest_asyncio",)

NETWORK = ResourceId("network", "main")
SUBNET = ResourceId("subnet", "web")
SECURITY_GROUP = ResourceId("security_group", "web")
INSTANCE = ResourceId("instance", "web")


def scenario_document(
    cidr_block: str = "10.0.0.0/16",
    instance_type: str = "t3.micro",
    image_id: str = "ami-0abc1234",
    instance_cbd: bool = False,
    sg_name: str = "web-sg",
    sg_cbd: bool = False,
) -> dict[str, Any]:
    """VPC, subnet, security group and instance for a single web server."""
    return {
        "resources": [
            {
                "kind": "network",
                "name": "main",
                "attributes": {"cidr_block": cidr_block, "tags": {"Name": "web-vpc"}},
            },
            {
                "kind": "subnet",
                "name": "web",
                "attributes": {
                    "network_id": {"ref": "network.main.id"},
                    "cidr_block": "10.0.1.0/24",
                    "availability_zone": "us-east-1a",
                },
            },
            {
                "kind": "security_group",
                "name": "web",
                "attributes": {
                    "network_id": "${network.main.id}",
                    "name": sg_name,
                    "description": "web server access",
                    "ingress": [
                        {"port": 22, "cidr": "203.0.113.10/32"},
                        {"port": 80, "cidr": "0.0.0.0/0"},
                    ],
                },
                "lifecycle": {"create_before_destroy": sg_cbd},
            },
            {
                "kind": "instance",
                "name": "web",
                "attributes": {
                    "image_id": image_id,
                    "instance_type": instance_type,
                    "subnet_id": {"ref": "subnet.web.id"},
                    "security_group_ids": [{"ref": "security_group.web.id"}],
                },
                "lifecycle": {"create_before_destroy": instance_cbd},
            },
        ],
        "outputs": [
            {"name": "public_ip", "value": "${instance.web.public_ip}"},
            {"name": "instance_arn", "value": "${instance.web.arn}", "sensitive": True},
        ],
    }


def scenario(**kwargs: Any) -> Declarations:
    return declarations_from_dict(scenario_document(**kwargs))


def applied_state(declarations: Declarations) -> dict[ResourceId, ResourceState]:
    """State as if every declaration had been created verbatim, ids "<kind>-<name>"."""
    state: dict[ResourceId, ResourceState] = {}
    graph = build_graph(declarations)
    for rid in graph.topological_order():
        decl = declarations.get(rid)

        def resolve(ref):
            return state[ref.target].attributes[ref.path[0]]

        inputs = substitute(decl.attributes, resolve)
        remote_id = f"{rid.kind}-{rid.name}"
        state[rid] = ResourceState(
            resource_id=rid,
            remote_id=remote_id,
            attributes={**inputs, "id": remote_id, "arn": f"arn:sim:{rid.kind}/{remote_id}"},
            inputs=inputs,
            dependencies=graph.dependencies_of(rid),
        )
    return state


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep config, logs, metrics and secrets out of the user's home and between tests."""
    monkeypatch.setenv("CONVERGE_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("CONVERGE_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("CONVERGE_LOG_FILE", "0")
    for name in (
        "CONVERGE_MAX_CONCURRENCY",
        "CONVERGE_REFRESH",
        "CONVERGE_STATE_PATH",
        "CONVERGE_LOG_LEVEL",
        "CONVERGE_RETRY_ATTEMPTS",
        "CONVERGE_RETRY_INITIAL_DELAY",
        "CONVERGE_RETRY_MAX_DELAY",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    reset_log_config()
    reset_metrics()
    clear_registered_secrets()
    yield
    reset_config()
    reset_log_config()
    clear_registered_secrets()


@pytest.fixture
async def temp_db_path() -> AsyncGenerator[Path, None]:
    """Create a temporary database path."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "state.db"


@pytest.fixture
def cloud() -> SimulatedCloud:
    return SimulatedCloud()


@pytest.fixture
def registry(cloud: SimulatedCloud) -> ProviderRegistry:
    return build_registry(cloud=cloud)


@pytest.fixture
async def store(temp_db_path: Path) -> StateStore:
    state_store = StateStore(StateRepository(temp_db_path))
    await state_store.load()
    return state_store


@pytest.fixture
def engine_config() -> EngineConfig:
    """Sequential execution and instant retries so ordering is exact."""
    return EngineConfig(
        max_concurrency=1,
        refresh=True,
        retry=RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0),
    )


@pytest.fixture
def engine(registry: ProviderRegistry, store: StateStore, engine_config: EngineConfig) -> Engine:
    return Engine(registry, store, engine_config)


@pytest.fixture
def declarations() -> Declarations:
    return scenario()
