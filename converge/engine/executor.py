"""
Converge Engine - Plan executor.

Runs plan items as soon as every item they depend on has succeeded, with
a bounded number of provider calls in flight. Each successful item is
committed to the state store before any dependent starts.

On the first failure no new item is started (fail-fast); items already
running finish and commit. There is no rollback: the next run re-plans
against the updated state.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from loguru import logger

from converge.config.constants import DEFAULT_MAX_CONCURRENCY
from converge.core.exceptions import (
    ConvergeError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    ResourceNotFoundError,
    UnresolvedReferenceError,
)
from converge.core.metrics import timing
from converge.core.resilience import RetryPolicy, call_with_retry
from converge.core.types import ItemAction, ItemStatus
from converge.engine.report import ApplyReport, ItemResult
from converge.model.resources import Reference, format_path, lookup_path, substitute
from converge.state.models import ResourceState
from converge.utils.logger import log_prefix

if TYPE_CHECKING:
    from converge.engine.planner import Plan, PlanItem
    from converge.model.resources import ResourceId
    from converge.providers.base import ProviderRegistry, ResourceProvider
    from converge.state.store import StateStore


class Executor:
    """
    Apply a plan against providers and the state store.

    Usage:
        executor = Executor(registry, store, max_concurrency=4)
        report = await executor.execute(plan)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Initialize executor.

        Args:
            registry: Providers per resource kind
            store: State store (loaded)
            max_concurrency: Maximum items in flight
            retry_policy: Backoff for transient provider errors
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got: {max_concurrency}")
        self.registry = registry
        self.store = store
        self.max_concurrency = max_concurrency
        self.retry_policy = retry_policy or RetryPolicy()

    async def execute(self, plan: Plan, cancel_event: asyncio.Event | None = None) -> ApplyReport:
        """
        Execute a plan.

        Args:
            plan: Plan to apply
            cancel_event: Once set, no new item starts; running items finish

        Returns:
            ApplyReport listing every item in plan order

        Raises:
            asyncio.CancelledError: If the calling task is cancelled (after
                running items have finished and committed)
        """
        await self.store.ensure_loaded()

        cancel_event = cancel_event or asyncio.Event()
        report = ApplyReport(plan=plan, results=[ItemResult(item) for item in plan.items])
        semaphore = asyncio.Semaphore(self.max_concurrency)
        halt = asyncio.Event()
        started: set[int] = set()
        succeeded: set[int] = set()
        running: dict[asyncio.Task, int] = {}
        halted = False
        start_time = time.monotonic()

        logger.info(f"{log_prefix('📋')} Applying plan: {len(plan)} item(s), concurrency={self.max_concurrency}")

        try:
            while True:
                if not halted and not cancel_event.is_set():
                    for item in plan.items:
                        if item.index in started:
                            continue
                        if all(dep in succeeded for dep in item.depends_on):
                            started.add(item.index)
                            task = asyncio.create_task(
                                self._run_item(item, report.results[item.index], semaphore, cancel_event, halt)
                            )
                            running[task] = item.index

                if not running:
                    break

                finished, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in finished:
                    index = running.pop(task)
                    if report.results[index].status == ItemStatus.SUCCEEDED:
                        succeeded.add(index)
                    elif report.results[index].status == ItemStatus.FAILED:
                        halted = True

        except asyncio.CancelledError:
            logger.warning(f"{log_prefix('🛑')} Apply cancelled, waiting for {len(running)} running item(s)")
            cancel_event.set()
            if running:
                await asyncio.wait(running)
            self._finish(report, cancelled=True, start_time=start_time)
            raise

        self._finish(report, cancelled=cancel_event.is_set(), start_time=start_time)
        return report

    def _finish(self, report: ApplyReport, cancelled: bool, start_time: float) -> None:
        report.cancelled = cancelled
        report.duration = time.monotonic() - start_time
        if cancelled:
            for result in report.results:
                if result.status == ItemStatus.NOT_ATTEMPTED:
                    result.status = ItemStatus.CANCELLED

        failed = report.failed_item
        if failed is not None:
            logger.error(
                f"{log_prefix('❌')} Apply halted at {failed.item.label}: {failed.error} "
                f"({len(report.succeeded)} succeeded, {len(report.not_attempted)} not attempted)"
            )
        elif cancelled:
            logger.warning(
                f"{log_prefix('🛑')} Apply cancelled ({len(report.succeeded)} succeeded, "
                f"{len(report.not_attempted)} not attempted)"
            )
        else:
            logger.info(f"{log_prefix('✅')} Apply complete: {len(report.succeeded)} item(s) in {report.duration:.2f}s")

    async def _run_item(
        self,
        item: PlanItem,
        result: ItemResult,
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event,
        halt: asyncio.Event,
    ) -> None:
        async with semaphore:
            if cancel_event.is_set():
                result.status = ItemStatus.CANCELLED
                return
            if halt.is_set():
                return

            start = time.monotonic()
            try:
                await self._apply_item(item, result)
                result.status = ItemStatus.SUCCEEDED
                if item.action != ItemAction.NOOP:
                    logger.info(f"{log_prefix('✅')} {item.label}")
            except ConvergeError as e:
                result.status = ItemStatus.FAILED
                halt.set()
                result.error = e.message
                logger.error(f"{log_prefix('❌')} {item.label} failed: {e}")
            except Exception as e:
                result.status = ItemStatus.FAILED
                halt.set()
                result.error = f"{type(e).__name__}: {e}"
                logger.exception(f"{log_prefix('❌')} {item.label} failed unexpectedly: {e}")
            finally:
                result.duration = time.monotonic() - start

    # =========================================================================
    # Item actions
    # =========================================================================

    async def _apply_item(self, item: PlanItem, result: ItemResult) -> None:
        provider = self.registry.get(item.resource_id.kind)
        snapshot = self.store.snapshot()
        prior = snapshot.get(item.resource_id)

        if item.action == ItemAction.NOOP:
            if prior is not None and list(item.dependencies) != prior.dependencies:
                prior.dependencies = list(item.dependencies)
                await self.store.put(prior)
            return

        if item.action == ItemAction.DESTROY:
            await self._destroy(provider, item, result, prior)
            return

        attributes = self._resolve(item, snapshot)

        if item.action == ItemAction.CREATE:
            remote_id, observed = await self._call(provider, "create", item, result, attributes)
            deposed: list[str] = []
            if prior is not None:
                # The previous object stays live until its paired destroy runs
                deposed = [*prior.deposed, prior.remote_id]
            entry = ResourceState(
                resource_id=item.resource_id,
                remote_id=remote_id,
                attributes=observed,
                inputs=attributes,
                dependencies=list(item.dependencies),
                deposed=deposed,
            )
        else:
            if prior is None:
                raise ResourceNotFoundError(
                    f"{item.resource_id} has no state entry to update",
                    resource=str(item.resource_id),
                    operation="update",
                )
            observed = await self._call(provider, "update", item, result, prior.remote_id, attributes)
            entry = prior
            entry.attributes = observed
            entry.inputs = attributes
            entry.dependencies = list(item.dependencies)

        result.remote_id = entry.remote_id
        await self.store.put(entry)

    async def _destroy(
        self,
        provider: ResourceProvider,
        item: PlanItem,
        result: ItemResult,
        entry: ResourceState | None,
    ) -> None:
        if entry is None:
            logger.debug(f"{item.resource_id} already absent from state")
            return

        for remote_id in list(entry.deposed):
            await self._delete(provider, item, result, remote_id)
            entry.deposed.remove(remote_id)
            await self.store.put(entry)

        if item.deposed_only:
            return

        await self._delete(provider, item, result, entry.remote_id)
        result.remote_id = entry.remote_id
        await self.store.remove(item.resource_id)

    async def _delete(
        self,
        provider: ResourceProvider,
        item: PlanItem,
        result: ItemResult,
        remote_id: str,
    ) -> None:
        try:
            await self._call(provider, "delete", item, result, remote_id)
        except ResourceNotFoundError:
            logger.warning(f"{log_prefix('⚠️')} {item.resource_id} ({remote_id}) already deleted")

    def _resolve(self, item: PlanItem, snapshot: dict[ResourceId, ResourceState]) -> dict[str, Any]:
        """Substitute references from the state snapshot taken at item start."""

        def resolve(ref: Reference) -> Any:
            producer = snapshot.get(ref.target)
            if producer is None:
                raise UnresolvedReferenceError(item.resource_id, ref.target, format_path(ref.path))
            try:
                return lookup_path(producer.attributes, ref.path)
            except KeyError:
                raise UnresolvedReferenceError(
                    item.resource_id, ref.target, format_path(ref.path)
                ) from None

        return substitute(item.attributes, resolve)

    async def _call(
        self,
        provider: ResourceProvider,
        operation: str,
        item: PlanItem,
        result: ItemResult,
        *args: Any,
    ) -> Any:
        """One provider operation with retries of transient errors."""
        kind = item.resource_id.kind
        method = getattr(provider, operation)

        async def attempt() -> Any:
            result.attempts += 1
            with timing("provider_call", kind=kind, operation=operation) as t:
                try:
                    return await method(*args)
                except ProviderTransientError:
                    t.labels["status"] = "transient"
                    raise
                except ResourceNotFoundError:
                    t.labels["status"] = "not_found"
                    raise
                except ProviderError:
                    t.labels["status"] = "permanent"
                    raise

        try:
            return await call_with_retry(
                attempt,
                policy=self.retry_policy,
                retry_on=(ProviderTransientError,),
                label=f"{operation} {item.resource_id}",
            )
        except ProviderTransientError as e:
            raise ProviderPermanentError(
                f"{operation} {item.resource_id} gave up after "
                f"{self.retry_policy.max_attempts} attempts: {e.message}",
                resource=str(item.resource_id),
                operation=operation,
            ) from e

