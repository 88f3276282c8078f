"""PostgreSQL implementation of the correlation repository."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable

import asyncpg

from ..contracts import (
    Correlation,
    CorrelationFilter,
    ProcessInstance,
    ProcessInstanceFilter,
    ProcessInstanceState,
    serialize_error,
    transition,
    utcnow,
)
from ..errors import (
    DuplicateKeyError,
    InvalidReferenceError,
    NotFoundError,
    StoreUnavailableError,
)
from .repository import CorrelationRepository

_INSTANCE_COLUMNS = (
    "process_instance_id, correlation_id, process_model_id, process_model_hash, "
    "parent_process_instance_id, state, error, owner_id, created_at, finished_at"
)

_UNAVAILABLE = (
    OSError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.TransactionRollbackError,
)


def _record_to_instance(r: asyncpg.Record) -> ProcessInstance:
    return ProcessInstance(
        process_instance_id=r["process_instance_id"],
        correlation_id=r["correlation_id"],
        process_model_id=r["process_model_id"],
        process_model_hash=r["process_model_hash"],
        parent_process_instance_id=r["parent_process_instance_id"],
        state=ProcessInstanceState(r["state"]),
        error=json.loads(r["error"]) if r["error"] is not None else None,
        owner_id=r["owner_id"],
        created_at=r["created_at"],
        finished_at=r["finished_at"],
    )


class PostgresCorrelationRepository(CorrelationRepository):
    """Persist correlations and process instances using PostgreSQL.

    Each call opens its own connection. Connection loss, interface errors and
    serialization conflicts surface as ``StoreUnavailableError``.
    """

    def __init__(self, dsn: str, timeout: float = 5.0):
        self._dsn = dsn
        self._timeout = timeout
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn, timeout=self._timeout)
        except _UNAVAILABLE as exc:
            raise StoreUnavailableError(
                "postgres", f"postgres store unavailable: {exc}"
            ) from exc
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = await self._connect()
        try:
            yield conn
        except _UNAVAILABLE as exc:
            raise StoreUnavailableError(
                "postgres", f"postgres store unavailable: {exc}"
            ) from exc
        finally:
            if not conn.is_closed():
                await conn.close()

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS correlations (
                seq BIGSERIAL PRIMARY KEY,
                correlation_id TEXT NOT NULL UNIQUE,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS process_instances (
                seq BIGSERIAL PRIMARY KEY,
                process_instance_id TEXT NOT NULL UNIQUE,
                correlation_id TEXT NOT NULL REFERENCES correlations (correlation_id),
                process_model_id TEXT NOT NULL,
                process_model_hash TEXT NOT NULL,
                parent_process_instance_id TEXT,
                state TEXT NOT NULL,
                error JSONB,
                owner_id TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                finished_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_correlation_state "
            "ON process_instances (correlation_id, state)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_model ON process_instances (process_model_id)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_parent "
            "ON process_instances (parent_process_instance_id)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_instances_state ON process_instances (state)"
        )

    async def _build_correlations(
        self, conn: asyncpg.Connection, rows: Iterable[asyncpg.Record]
    ) -> list[Correlation]:
        rows = list(rows)
        if not rows:
            return []
        ids = [r["correlation_id"] for r in rows]
        instance_rows = await conn.fetch(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances "
            "WHERE correlation_id = ANY($1::text[]) ORDER BY seq",
            ids,
        )
        grouped: dict[str, list[ProcessInstance]] = {cid: [] for cid in ids}
        for r in instance_rows:
            grouped[r["correlation_id"]].append(_record_to_instance(r))
        return [
            Correlation(
                correlation_id=r["correlation_id"],
                created_at=r["created_at"],
                process_instances=grouped[r["correlation_id"]],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    async def create_process_instance(self, instance: ProcessInstance) -> None:
        pid = instance.process_instance_id
        parent_id = instance.parent_process_instance_id
        async with self._connection() as conn:
            async with conn.transaction():
                if parent_id is not None:
                    exists = await conn.fetchval(
                        "SELECT 1 FROM process_instances WHERE process_instance_id = $1",
                        parent_id,
                    )
                    if not exists:
                        raise InvalidReferenceError(
                            parent_id,
                            f"parent process instance {parent_id!r} does not exist",
                        )
                referenced = await conn.fetchval(
                    "SELECT 1 FROM process_instances "
                    "WHERE parent_process_instance_id = $1 LIMIT 1",
                    pid,
                )
                if referenced:
                    raise DuplicateKeyError(
                        pid, f"process instance id {pid!r} is still referenced as a parent"
                    )
                await conn.execute(
                    "INSERT INTO correlations (correlation_id, created_at) VALUES ($1, $2) "
                    "ON CONFLICT (correlation_id) DO NOTHING",
                    instance.correlation_id,
                    instance.created_at,
                )
                try:
                    await conn.execute(
                        f"INSERT INTO process_instances ({_INSTANCE_COLUMNS}) "
                        "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)",
                        pid,
                        instance.correlation_id,
                        instance.process_model_id,
                        instance.process_model_hash,
                        parent_id,
                        instance.state.value,
                        None if instance.error is None else json.dumps(instance.error, default=str),
                        instance.owner_id,
                        instance.created_at,
                        instance.finished_at,
                    )
                except asyncpg.UniqueViolationError as exc:
                    raise DuplicateKeyError(
                        pid, f"process instance {pid!r} already exists"
                    ) from exc
                except asyncpg.ForeignKeyViolationError as exc:
                    # a concurrent purge removed the correlation after the upsert
                    raise StoreUnavailableError(
                        instance.correlation_id,
                        f"correlation {instance.correlation_id!r} was removed concurrently",
                    ) from exc

    async def get_process_instance(self, process_instance_id: str) -> ProcessInstance | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_INSTANCE_COLUMNS} FROM process_instances "
                "WHERE process_instance_id = $1",
                process_instance_id,
            )
        return _record_to_instance(row) if row else None

    async def get_correlation(self, correlation_id: str) -> Correlation | None:
        async with self._connection() as conn:
            rows = await conn.fetch(
                "SELECT correlation_id, created_at FROM correlations WHERE correlation_id = $1",
                correlation_id,
            )
            built = await self._build_correlations(conn, rows)
        return built[0] if built else None

    async def scan_correlations(
        self, criteria: CorrelationFilter, offset: int = 0, limit: int | None = None
    ) -> list[Correlation]:
        clauses: list[str] = []
        params: list[Any] = []
        if criteria.active_only:
            params.append(ProcessInstanceState.running.value)
            clauses.append(
                "EXISTS (SELECT 1 FROM process_instances p "
                f"WHERE p.correlation_id = c.correlation_id AND p.state = ${len(params)})"
            )
        if criteria.process_model_id is not None:
            params.append(criteria.process_model_id)
            clauses.append(
                "EXISTS (SELECT 1 FROM process_instances p "
                f"WHERE p.correlation_id = c.correlation_id AND p.process_model_id = ${len(params)})"
            )
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT c.correlation_id, c.created_at FROM correlations c {where} "
                f"ORDER BY c.seq LIMIT ${len(params) - 1} OFFSET ${len(params)}",
                *params,
            )
            return await self._build_correlations(conn, rows)

    async def scan_process_instances(
        self, criteria: ProcessInstanceFilter, offset: int = 0, limit: int | None = None
    ) -> list[ProcessInstance]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("correlation_id", criteria.correlation_id),
            ("process_model_id", criteria.process_model_id),
            ("state", criteria.state.value if criteria.state is not None else None),
            ("parent_process_instance_id", criteria.parent_process_instance_id),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_INSTANCE_COLUMNS} FROM process_instances {where} "
                f"ORDER BY seq LIMIT ${len(params) - 1} OFFSET ${len(params)}",
                *params,
            )
        return [_record_to_instance(r) for r in rows]

    async def transition_process_instance(
        self,
        process_instance_id: str,
        correlation_id: str,
        state: ProcessInstanceState,
        error: Any = None,
        finished_at: datetime | None = None,
    ) -> ProcessInstance:
        payload = (
            json.dumps(serialize_error(error), default=str)
            if state is ProcessInstanceState.error
            else None
        )
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE process_instances
                SET state = $1, error = $2::jsonb, finished_at = $3
                WHERE process_instance_id = $4 AND correlation_id = $5 AND state = $6
                RETURNING {_INSTANCE_COLUMNS}
                """,
                state.value,
                payload,
                finished_at or utcnow(),
                process_instance_id,
                correlation_id,
                ProcessInstanceState.running.value,
            )
            if row is None:
                row = await conn.fetchrow(
                    f"SELECT {_INSTANCE_COLUMNS} FROM process_instances "
                    "WHERE process_instance_id = $1",
                    process_instance_id,
                )
                if row is None or row["correlation_id"] != correlation_id:
                    raise NotFoundError(
                        process_instance_id,
                        f"process instance {process_instance_id!r} not found in "
                        f"correlation {correlation_id!r}",
                    )
                transition(ProcessInstanceState(row["state"]), state, process_instance_id)
        return _record_to_instance(row)

    async def delete_correlations_by_process_model(self, process_model_id: str) -> list[str]:
        async with self._connection() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    SELECT c.correlation_id FROM correlations c
                    WHERE EXISTS (
                        SELECT 1 FROM process_instances p
                        WHERE p.correlation_id = c.correlation_id AND p.process_model_id = $1
                    )
                    AND NOT EXISTS (
                        SELECT 1 FROM process_instances p
                        WHERE p.correlation_id = c.correlation_id AND p.process_model_id <> $1
                    )
                    ORDER BY c.seq
                    FOR UPDATE
                    """,
                    process_model_id,
                )
                doomed = [r["correlation_id"] for r in rows]
                if doomed:
                    await conn.execute(
                        "DELETE FROM process_instances WHERE correlation_id = ANY($1::text[])",
                        doomed,
                    )
                    await conn.execute(
                        "DELETE FROM correlations WHERE correlation_id = ANY($1::text[])",
                        doomed,
                    )
        return doomed

    async def close(self) -> None:
        pass
