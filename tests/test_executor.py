"""
Tests for the plan executor.

Tests:
- Per-item commits and reference substitution
- Fail-fast halting and not_attempted items
- Retries of transient provider errors
- Concurrency limit
- Delete of an already-missing object
"""

import pytest
from conftest import INSTANCE, NETWORK, SECURITY_GROUP, SUBNET

from converge.core.exceptions import ProviderPermanentError, ProviderTransientError
from converge.core.metrics import get_registry
from converge.core.resilience import RetryPolicy
from converge.core.types import ItemAction, ItemStatus, RunStatus
from converge.engine.executor import Executor
from converge.model.resources import Declarations, ResourceDecl, ResourceId

NO_DELAY = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


def executor_for(registry, store, max_concurrency=1):
    return Executor(registry, store, max_concurrency=max_concurrency, retry_policy=NO_DELAY)


def statuses(report):
    return [(str(r.resource_id), r.status) for r in report.results]


class TestExecution:
    """Happy path."""

    async def test_items_run_in_plan_order(self, engine, registry, store, cloud, declarations):
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert report.status == RunStatus.SUCCEEDED
        assert [call[:2] for call in cloud.calls] == [
            ("network", "create"),
            ("subnet", "create"),
            ("security_group", "create"),
            ("instance", "create"),
        ]

    async def test_references_resolve_to_committed_producers(self, engine, registry, store, declarations):
        plan = await engine.plan(declarations)

        await executor_for(registry, store).execute(plan)

        instance = store.get(INSTANCE)
        assert instance.attributes["subnet_id"] == store.get(SUBNET).remote_id
        assert instance.attributes["security_group_ids"] == [store.get(SECURITY_GROUP).remote_id]
        assert instance.inputs["subnet_id"] == store.get(SUBNET).remote_id
        assert instance.dependencies == [SUBNET, SECURITY_GROUP]

    async def test_results_carry_remote_ids(self, engine, registry, store, declarations):
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        for result in report.results:
            assert result.remote_id == store.get(result.resource_id).remote_id
            assert result.attempts == 1

    async def test_invalid_concurrency(self, registry, store):
        with pytest.raises(ValueError):
            Executor(registry, store, max_concurrency=0)


class TestFailFast:
    """The first failure stops new items from starting."""

    async def test_failure_halts_the_run(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("subnet", "create", ProviderPermanentError("subnet quota exceeded"))
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert statuses(report) == [
            ("network.main", ItemStatus.SUCCEEDED),
            ("subnet.web", ItemStatus.FAILED),
            ("security_group.web", ItemStatus.NOT_ATTEMPTED),
            ("instance.web", ItemStatus.NOT_ATTEMPTED),
        ]
        assert report.status == RunStatus.PARTIAL
        assert report.failed_item.error == "subnet quota exceeded"
        assert list(store) == [NETWORK]

    async def test_first_item_failure_is_failed(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("network", "create", ProviderPermanentError("invalid cidr"))
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert report.status == RunStatus.FAILED
        assert len(report.not_attempted) == 3
        assert len(store) == 0

    async def test_unexpected_exception_is_captured(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("network", "create", RuntimeError("boom"))
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert report.results[0].status == ItemStatus.FAILED
        assert report.results[0].error == "RuntimeError: boom"

    async def test_dependents_of_failed_item_never_start(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("security_group", "create", ProviderPermanentError("denied"))
        plan = await engine.plan(declarations)

        await executor_for(registry, store, max_concurrency=4).execute(plan)

        assert ("instance", "create", "") not in cloud.calls


class TestRetries:
    """Transient provider errors are retried with backoff."""

    async def test_transient_errors_are_retried(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("instance", "create", ProviderTransientError("throttled"), times=2)
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert report.ok
        assert report.results[plan.index_of(INSTANCE, ItemAction.CREATE)].attempts == 3
        assert get_registry().counter("converge_retry_attempts_total").total() == 2
        calls = get_registry().counter("converge_provider_calls_total")
        assert calls.get(kind="instance", operation="create", status="transient") == 2
        assert calls.get(kind="instance", operation="create", status="success") == 1

    async def test_exhausted_retries_fail_the_item(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("instance", "create", ProviderTransientError("throttled"), times=5)
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        failed = report.failed_item
        assert failed.resource_id == INSTANCE
        assert failed.attempts == 3
        assert "gave up after 3 attempts" in failed.error
        assert report.status == RunStatus.PARTIAL

    async def test_permanent_errors_are_not_retried(self, engine, registry, store, cloud, declarations):
        cloud.inject_failure("network", "create", ProviderPermanentError("forbidden"))
        plan = await engine.plan(declarations)

        report = await executor_for(registry, store).execute(plan)

        assert report.results[0].attempts == 1
        assert get_registry().counter("converge_provider_calls_total").get(
            kind="network", operation="create", status="permanent"
        ) == 1


class TestConcurrency:
    """At most max_concurrency provider calls are in flight."""

    @staticmethod
    def networks(count: int) -> Declarations:
        return Declarations(resources=tuple(
            ResourceDecl(ResourceId("network", f"n{i}"), {"cidr_block": f"10.{i}.0.0/16"})
            for i in range(count)
        ))

    async def test_independent_items_run_in_parallel(self, engine, registry, store, cloud):
        cloud.latency = 0.02
        plan = await engine.plan(self.networks(6))

        report = await executor_for(registry, store, max_concurrency=2).execute(plan)

        assert report.ok
        assert cloud.max_in_flight == 2
        assert len(store) == 6

    async def test_sequential_execution(self, engine, registry, store, cloud, declarations):
        cloud.latency = 0.01
        plan = await engine.plan(declarations)

        await executor_for(registry, store, max_concurrency=1).execute(plan)

        assert cloud.max_in_flight == 1

    async def test_dependencies_hold_under_parallelism(self, engine, registry, store, cloud, declarations):
        cloud.latency = 0.01
        plan = await engine.plan(declarations)

        await executor_for(registry, store, max_concurrency=8).execute(plan)

        kinds = [call[0] for call in cloud.calls]
        assert kinds[0] == "network"
        assert kinds[-1] == "instance"


class TestDestroy:
    """Destroy items."""

    async def test_already_deleted_object_counts_as_destroyed(self, engine, registry, store, cloud, declarations):
        await engine.apply(declarations)
        del cloud.objects[store.get(INSTANCE).remote_id]
        plan = await engine.plan(declarations, destroy=True, refresh=False)

        report = await executor_for(registry, store).execute(plan)

        assert report.ok
        assert report.counts["destroyed"] == 4
        assert len(store) == 0
        assert cloud.objects == {}
        assert get_registry().counter("converge_provider_calls_total").get(
            kind="instance", operation="delete", status="not_found"
        ) == 1
