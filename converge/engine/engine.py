"""
Converge Engine - Facade.

Ties the pipeline together for one state store:

    declarations -> graph -> refresh -> diff -> plan -> execute -> outputs
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from loguru import logger

from converge.config.models import EngineConfig
from converge.core.exceptions import (
    ApplyError,
    ProviderPermanentError,
    ProviderTransientError,
    ResourceNotFoundError,
    UnresolvedReferenceError,
)
from converge.core.metrics import timing, track_apply_run
from converge.core.resilience import call_with_retry
from converge.engine.differ import compute_changes
from converge.engine.executor import Executor
from converge.engine.graph import build_graph
from converge.engine.outputs import output_references, resolve_outputs
from converge.engine.planner import Plan, build_plan
from converge.model.resources import Declarations, ResourceId, format_path
from converge.utils.logger import log_prefix

if TYPE_CHECKING:
    from converge.engine.outputs import OutputValue
    from converge.engine.report import ApplyReport
    from converge.providers.base import ProviderRegistry, ResourceProvider
    from converge.state.models import ResourceState
    from converge.state.store import StateStore


class Engine:
    """
    Plan and apply declarations against one state store.

    Usage:
        engine = Engine(build_registry(), StateStore(StateRepository(path)))
        plan = await engine.plan(declarations)
        report = await engine.apply(plan)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: StateStore,
        config: EngineConfig | None = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config or EngineConfig()
        self.retry_policy = self.config.retry.to_policy()

    def _executor(self) -> Executor:
        return Executor(
            self.registry,
            self.store,
            max_concurrency=self.config.max_concurrency,
            retry_policy=self.retry_policy,
        )

    # =========================================================================
    # Refresh
    # =========================================================================

    async def refresh(self) -> dict[str, int]:
        """
        Re-read every stored resource from its provider.

        Resources the provider no longer knows are dropped from state so
        the next plan re-creates them. Other entries get the attributes the
        provider reports.

        Returns:
            Counts: {"refreshed": n, "removed": m}
        """
        await self.store.ensure_loaded()
        snapshot = self.store.snapshot()
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        counts = {"refreshed": 0, "removed": 0}

        async def refresh_one(entry: ResourceState) -> None:
            provider = self.registry.get(entry.kind)
            async with semaphore:
                try:
                    observed = await call_with_retry(
                        self._read, provider, entry,
                        policy=self.retry_policy,
                        retry_on=(ProviderTransientError,),
                        label=f"read {entry.resource_id}",
                    )
                except ResourceNotFoundError:
                    logger.warning(
                        f"{log_prefix('⚠️')} {entry.resource_id} ({entry.remote_id}) no longer exists, "
                        f"removing from state"
                    )
                    await self.store.remove(entry.resource_id)
                    counts["removed"] += 1
                    return
                except ProviderTransientError as e:
                    raise ProviderPermanentError(
                        f"read {entry.resource_id} gave up: {e.message}",
                        resource=str(entry.resource_id),
                        operation="read",
                    ) from e

            if observed != entry.attributes:
                logger.info(f"{log_prefix('🔄')} {entry.resource_id} changed outside of converge")
                entry.attributes = observed
                await self.store.put(entry)
            counts["refreshed"] += 1

        await asyncio.gather(*(refresh_one(entry) for entry in snapshot.values()))
        logger.debug(f"Refresh: {counts['refreshed']} refreshed, {counts['removed']} removed")
        return counts

    @staticmethod
    async def _read(provider: ResourceProvider, entry: ResourceState) -> dict:
        with timing("provider_call", kind=entry.kind, operation="read") as t:
            try:
                return await provider.read(entry.remote_id)
            except ResourceNotFoundError:
                t.labels["status"] = "not_found"
                raise
            except ProviderTransientError:
                t.labels["status"] = "transient"
                raise

    # =========================================================================
    # Plan / apply
    # =========================================================================

    async def plan(
        self,
        declarations: Declarations,
        destroy: bool = False,
        refresh: bool | None = None,
    ) -> Plan:
        """
        Compute the plan that converges state to declarations.

        Args:
            declarations: Desired resources and outputs
            destroy: Plan as if nothing were declared
            refresh: Read remote state first (default: config.refresh)

        Raises:
            UnresolvedReferenceError, CyclicDependencyError,
            UnknownResourceKindError, PlanConflictError
        """
        graph = build_graph(declarations)
        self._check_outputs(declarations)

        if destroy:
            declarations = Declarations.empty()
            graph = build_graph(declarations)

        await self.store.ensure_loaded()
        if self.config.refresh if refresh is None else refresh:
            await self.refresh()

        snapshot = self.store.snapshot()
        changes = compute_changes(declarations, graph, snapshot, self.registry)
        return build_plan(changes, graph, snapshot, self.registry, declarations, destroy=destroy)

    @staticmethod
    def _check_outputs(declarations: Declarations) -> None:
        for output in declarations.outputs:
            for ref in output_references([output]):
                if ref.target not in declarations:
                    raise UnresolvedReferenceError(
                        ResourceId("output", output.name), ref.target, format_path(ref.path)
                    )

    async def apply(
        self,
        target: Declarations | Plan,
        cancel_event: asyncio.Event | None = None,
        raise_on_failure: bool = False,
        refresh: bool | None = None,
    ) -> ApplyReport:
        """
        Apply declarations (planning first) or a previously computed plan.

        Outputs are resolved only when every item succeeded.

        Raises:
            ApplyError: If raise_on_failure and the run did not succeed
        """
        plan = target if isinstance(target, Plan) else await self.plan(target, refresh=refresh)

        start = time.monotonic()
        report = await self._executor().execute(plan, cancel_event=cancel_event)

        if report.ok:
            report.outputs = resolve_outputs(plan.outputs, self.store.snapshot())

        track_apply_run(str(report.status), time.monotonic() - start)
        if raise_on_failure and not report.ok:
            raise ApplyError(report)
        return report

    async def destroy(
        self,
        declarations: Declarations | None = None,
        cancel_event: asyncio.Event | None = None,
        raise_on_failure: bool = False,
        refresh: bool | None = None,
    ) -> ApplyReport:
        """Destroy everything in state (declarations are validated first)."""
        plan = await self.plan(declarations or Declarations.empty(), destroy=True, refresh=refresh)
        return await self.apply(plan, cancel_event=cancel_event, raise_on_failure=raise_on_failure)

    async def outputs(self, declarations: Declarations) -> dict[str, OutputValue]:
        """Resolve outputs against the current state without applying."""
        await self.store.ensure_loaded()
        return resolve_outputs(declarations.outputs, self.store.snapshot())
