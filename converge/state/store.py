"""
Converge State - Store.

Single-owner view of the persisted state for one run. Loaded in full
before planning; every commit is written to the repository before the
in-memory view changes, so readers only ever see committed entries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from typing import TYPE_CHECKING

from loguru import logger

from converge.state.models import ResourceState, utcnow

if TYPE_CHECKING:
    from converge.model.resources import ResourceId
    from converge.state.repository import StateRepository


class StateStore:
    """
    Durable source of truth for convergence.

    Usage:
        store = StateStore(StateRepository(path))
        await store.load()
        snapshot = store.snapshot()
        await store.put(new_state)
    """

    def __init__(self, repository: StateRepository) -> None:
        self._repository = repository
        self._entries: dict[ResourceId, ResourceState] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    @property
    def repository(self) -> StateRepository:
        return self._repository

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> None:
        """(Re)read every entry from the repository."""
        async with self._lock:
            entries = await self._repository.list_resources()
            self._entries = {entry.resource_id: entry for entry in entries}
            self._loaded = True
        logger.debug(f"Loaded {len(self._entries)} resource(s) from state")

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.load()

    def snapshot(self) -> dict[ResourceId, ResourceState]:
        """Consistent deep copy of all committed entries."""
        return {rid: entry.copy() for rid, entry in self._entries.items()}

    def get(self, resource_id: ResourceId) -> ResourceState | None:
        entry = self._entries.get(resource_id)
        return entry.copy() if entry else None

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ResourceId]:
        return iter(sorted(self._entries))

    async def put(self, entry: ResourceState) -> None:
        """Commit one entry (insert or replace)."""
        committed = entry.copy()
        committed.updated_at = utcnow()
        async with self._lock:
            await self._repository.save_resource(committed)
            self._entries[committed.resource_id] = committed
        logger.debug(f"Committed state for {committed.resource_id} ({committed.remote_id})")

    async def remove(self, resource_id: ResourceId) -> None:
        """Commit the removal of one entry."""
        async with self._lock:
            await self._repository.delete_resource(resource_id)
            self._entries.pop(resource_id, None)
        logger.debug(f"Removed {resource_id} from state")
