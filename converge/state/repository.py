"""
Converge State - Repository.

SQLite persistence for resource state. Each write is its own transaction,
so a crash never leaves a half-written entry behind.
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite
from loguru import logger

from converge.core.exceptions import PersistenceError
from converge.model.resources import ResourceId
from converge.state.models import ResourceState


class StateRepository:
    """
    SQLite-based state persistence.

    Stores one row per resource identity plus a serial number that is
    bumped on every committed change.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database (created on first use).
        """
        self._db_path = db_path
        self._initialized = False

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    async def initialize(self) -> None:
        """Initialize the database schema."""
        if self._initialized:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS schema_version (
                        version INTEGER PRIMARY KEY
                    )
                """)

                cursor = await db.execute("SELECT version FROM schema_version LIMIT 1")
                row = await cursor.fetchone()
                current_version = row[0] if row else 0

                if current_version < self.SCHEMA_VERSION:
                    await self._migrate(db, current_version)

                await db.commit()
        except aiosqlite.Error as e:
            raise PersistenceError("initialize", str(e), {"path": str(self._db_path)}) from e

        self._initialized = True
        logger.debug(f"State repository initialized at {self._db_path}")

    async def _migrate(self, db: aiosqlite.Connection, from_version: int) -> None:
        """Run database migrations."""
        if from_version < 1:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS resources (
                    address TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    name TEXT NOT NULL,
                    remote_id TEXT NOT NULL,
                    attributes TEXT NOT NULL,
                    inputs TEXT NOT NULL,
                    dependencies TEXT NOT NULL,
                    deposed TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_resources_kind
                ON resources(kind)
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await db.execute("INSERT OR IGNORE INTO metadata (key, value) VALUES ('serial', '0')")

            await db.execute("DELETE FROM schema_version")
            await db.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

            logger.info("Migrated state database to version 1")

    async def _bump_serial(self, db: aiosqlite.Connection) -> None:
        await db.execute(
            "UPDATE metadata SET value = CAST(CAST(value AS INTEGER) + 1 AS TEXT) WHERE key = 'serial'"
        )

    async def save_resource(self, resource: ResourceState) -> None:
        """Save or update a resource state in one transaction."""
        await self.initialize()

        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO resources (
                        address, kind, name, remote_id, attributes, inputs,
                        dependencies, deposed, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(resource.resource_id),
                        resource.resource_id.kind,
                        resource.resource_id.name,
                        resource.remote_id,
                        json.dumps(resource.attributes),
                        json.dumps(resource.inputs),
                        json.dumps([str(d) for d in resource.dependencies]),
                        json.dumps(resource.deposed),
                        resource.created_at.isoformat(),
                        resource.updated_at.isoformat(),
                    ),
                )
                await self._bump_serial(db)
                await db.commit()
        except (aiosqlite.Error, TypeError, ValueError) as e:
            raise PersistenceError(
                "save_resource", str(e), {"resource": str(resource.resource_id)}
            ) from e

    async def delete_resource(self, resource_id: ResourceId) -> bool:
        """Delete a resource by identity."""
        await self.initialize()

        try:
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM resources WHERE address = ?",
                    (str(resource_id),),
                )
                deleted = cursor.rowcount > 0
                if deleted:
                    await self._bump_serial(db)
                await db.commit()
                return deleted
        except aiosqlite.Error as e:
            raise PersistenceError("delete_resource", str(e), {"resource": str(resource_id)}) from e

    async def get_resource(self, resource_id: ResourceId) -> ResourceState | None:
        """Get a resource by identity."""
        await self.initialize()

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM resources WHERE address = ?",
                (str(resource_id),),
            )
            row = await cursor.fetchone()

            if row is None:
                return None

            return self._row_to_resource(row)

    async def list_resources(self, kind: str | None = None) -> list[ResourceState]:
        """List resources, optionally of one kind, ordered by address."""
        await self.initialize()

        query = "SELECT * FROM resources WHERE 1=1"
        params: list[str] = []

        if kind:
            query += " AND kind = ?"
            params.append(kind)

        query += " ORDER BY address"

        try:
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
                return [self._row_to_resource(row) for row in rows]
        except aiosqlite.Error as e:
            raise PersistenceError("list_resources", str(e)) from e

    async def serial(self) -> int:
        """Number of committed changes since the database was created."""
        await self.initialize()

        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT value FROM metadata WHERE key = 'serial'")
            row = await cursor.fetchone()
            return int(row[0]) if row else 0

    async def clear_all(self) -> None:
        """Clear all state data (for testing)."""
        await self.initialize()

        async with aiosqlite.connect(self._db_path) as db:
            await db.execute("DELETE FROM resources")
            await db.commit()

    def _row_to_resource(self, row: aiosqlite.Row) -> ResourceState:
        """Convert a database row to ResourceState."""
        return ResourceState(
            resource_id=ResourceId(row["kind"], row["name"]),
            remote_id=row["remote_id"],
            attributes=json.loads(row["attributes"]),
            inputs=json.loads(row["inputs"]),
            dependencies=[ResourceId.parse(d) for d in json.loads(row["dependencies"])],
            deposed=json.loads(row["deposed"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
