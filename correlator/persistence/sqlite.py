"""SQLite implementation of the correlation repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

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

T = TypeVar("T")

_INSTANCE_COLUMNS = (
    "process_instance_id, correlation_id, process_model_id, process_model_hash, "
    "parent_process_instance_id, state, error, owner_id, created_at, finished_at"
)


def _dump_error(error: Any) -> str | None:
    return None if error is None else json.dumps(error, default=str)


def _row_to_instance(row: sqlite3.Row) -> ProcessInstance:
    return ProcessInstance(
        process_instance_id=row["process_instance_id"],
        correlation_id=row["correlation_id"],
        process_model_id=row["process_model_id"],
        process_model_hash=row["process_model_hash"],
        parent_process_instance_id=row["parent_process_instance_id"],
        state=ProcessInstanceState(row["state"]),
        error=json.loads(row["error"]) if row["error"] else None,
        owner_id=row["owner_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
        finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
    )


def _instance_where(criteria: ProcessInstanceFilter) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if criteria.correlation_id is not None:
        clauses.append("correlation_id = ?")
        params.append(criteria.correlation_id)
    if criteria.process_model_id is not None:
        clauses.append("process_model_id = ?")
        params.append(criteria.process_model_id)
    if criteria.state is not None:
        clauses.append("state = ?")
        params.append(criteria.state.value)
    if criteria.parent_process_instance_id is not None:
        clauses.append("parent_process_instance_id = ?")
        params.append(criteria.parent_process_instance_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


class SQLiteCorrelationRepository(CorrelationRepository):
    """Persist correlations and process instances using SQLite.

    A single connection is shared between worker threads; every unit of
    work holds ``_lock`` so transactions never interleave.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS correlations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    correlation_id TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS process_instances (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    process_instance_id TEXT NOT NULL UNIQUE,
                    correlation_id TEXT NOT NULL REFERENCES correlations (correlation_id),
                    process_model_id TEXT NOT NULL,
                    process_model_hash TEXT NOT NULL,
                    parent_process_instance_id TEXT,
                    state TEXT NOT NULL,
                    error TEXT,
                    owner_id TEXT,
                    created_at TEXT NOT NULL,
                    finished_at TEXT
                );
                CREATE INDEX IF NOT EXISTS ix_instances_correlation_state
                    ON process_instances (correlation_id, state);
                CREATE INDEX IF NOT EXISTS ix_instances_model
                    ON process_instances (process_model_id);
                CREATE INDEX IF NOT EXISTS ix_instances_parent
                    ON process_instances (parent_process_instance_id);
                CREATE INDEX IF NOT EXISTS ix_instances_state
                    ON process_instances (state);
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                return fn(*args)
            except sqlite3.OperationalError as exc:
                raise StoreUnavailableError(self.db_path, f"sqlite store unavailable: {exc}") from exc

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _fetch_instance(self, process_instance_id: str) -> ProcessInstance | None:
        row = self._conn.execute(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances WHERE process_instance_id = ?",
            (process_instance_id,),
        ).fetchone()
        return _row_to_instance(row) if row else None

    def _build_correlations(self, rows: Iterable[sqlite3.Row]) -> list[Correlation]:
        rows = list(rows)
        if not rows:
            return []
        ids = [r["correlation_id"] for r in rows]
        placeholders = ", ".join("?" for _ in ids)
        instance_rows = self._conn.execute(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances "
            f"WHERE correlation_id IN ({placeholders}) ORDER BY seq",
            ids,
        ).fetchall()
        grouped: dict[str, list[ProcessInstance]] = {cid: [] for cid in ids}
        for row in instance_rows:
            grouped[row["correlation_id"]].append(_row_to_instance(row))
        return [
            Correlation(
                correlation_id=r["correlation_id"],
                created_at=datetime.fromisoformat(r["created_at"]),
                process_instances=grouped[r["correlation_id"]],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Units of work
    def _create(self, instance: ProcessInstance) -> None:
        pid = instance.process_instance_id
        parent_id = instance.parent_process_instance_id
        with self._conn:
            if parent_id is not None:
                exists = self._conn.execute(
                    "SELECT 1 FROM process_instances WHERE process_instance_id = ?",
                    (parent_id,),
                ).fetchone()
                if not exists:
                    raise InvalidReferenceError(
                        parent_id, f"parent process instance {parent_id!r} does not exist"
                    )
            referenced = self._conn.execute(
                "SELECT 1 FROM process_instances WHERE parent_process_instance_id = ? LIMIT 1",
                (pid,),
            ).fetchone()
            if referenced:
                raise DuplicateKeyError(
                    pid, f"process instance id {pid!r} is still referenced as a parent"
                )
            self._conn.execute(
                "INSERT OR IGNORE INTO correlations (correlation_id, created_at) VALUES (?, ?)",
                (instance.correlation_id, instance.created_at.isoformat()),
            )
            try:
                self._conn.execute(
                    f"INSERT INTO process_instances ({_INSTANCE_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        pid,
                        instance.correlation_id,
                        instance.process_model_id,
                        instance.process_model_hash,
                        parent_id,
                        instance.state.value,
                        _dump_error(instance.error),
                        instance.owner_id,
                        instance.created_at.isoformat(),
                        instance.finished_at.isoformat() if instance.finished_at else None,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateKeyError(pid, f"process instance {pid!r} already exists") from exc

    def _get_correlation(self, correlation_id: str) -> Correlation | None:
        rows = self._conn.execute(
            "SELECT correlation_id, created_at FROM correlations WHERE correlation_id = ?",
            (correlation_id,),
        ).fetchall()
        built = self._build_correlations(rows)
        return built[0] if built else None

    def _scan_correlations(
        self, criteria: CorrelationFilter, offset: int, limit: int | None
    ) -> list[Correlation]:
        clauses: list[str] = []
        params: list[Any] = []
        if criteria.active_only:
            clauses.append(
                "EXISTS (SELECT 1 FROM process_instances p "
                "WHERE p.correlation_id = c.correlation_id AND p.state = ?)"
            )
            params.append(ProcessInstanceState.running.value)
        if criteria.process_model_id is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM process_instances p "
                "WHERE p.correlation_id = c.correlation_id AND p.process_model_id = ?)"
            )
            params.append(criteria.process_model_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT c.correlation_id, c.created_at FROM correlations c {where} "
            "ORDER BY c.seq LIMIT ? OFFSET ?",
            (*params, -1 if limit is None else limit, offset),
        ).fetchall()
        return self._build_correlations(rows)

    def _scan_instances(
        self, criteria: ProcessInstanceFilter, offset: int, limit: int | None
    ) -> list[ProcessInstance]:
        where, params = _instance_where(criteria)
        rows = self._conn.execute(
            f"SELECT {_INSTANCE_COLUMNS} FROM process_instances {where} "
            "ORDER BY seq LIMIT ? OFFSET ?",
            (*params, -1 if limit is None else limit, offset),
        ).fetchall()
        return [_row_to_instance(r) for r in rows]

    def _transition(
        self,
        process_instance_id: str,
        correlation_id: str,
        state: ProcessInstanceState,
        error: Any,
        finished_at: datetime,
    ) -> ProcessInstance:
        with self._conn:
            cur = self._conn.execute(
                """
                UPDATE process_instances
                SET state = ?, error = ?, finished_at = ?
                WHERE process_instance_id = ? AND correlation_id = ? AND state = ?
                """,
                (
                    state.value,
                    (
                        _dump_error(serialize_error(error))
                        if state is ProcessInstanceState.error
                        else None
                    ),
                    finished_at.isoformat(),
                    process_instance_id,
                    correlation_id,
                    ProcessInstanceState.running.value,
                ),
            )
            current = self._fetch_instance(process_instance_id)
        if current is None or current.correlation_id != correlation_id:
            raise NotFoundError(
                process_instance_id,
                f"process instance {process_instance_id!r} not found in "
                f"correlation {correlation_id!r}",
            )
        if cur.rowcount == 0:
            transition(current.state, state, process_instance_id)
        return current

    def _delete_by_model(self, process_model_id: str) -> list[str]:
        with self._conn:
            rows = self._conn.execute(
                """
                SELECT c.correlation_id FROM correlations c
                WHERE EXISTS (
                    SELECT 1 FROM process_instances p
                    WHERE p.correlation_id = c.correlation_id AND p.process_model_id = ?
                )
                AND NOT EXISTS (
                    SELECT 1 FROM process_instances p
                    WHERE p.correlation_id = c.correlation_id AND p.process_model_id <> ?
                )
                ORDER BY c.seq
                """,
                (process_model_id, process_model_id),
            ).fetchall()
            doomed = [r["correlation_id"] for r in rows]
            if doomed:
                placeholders = ", ".join("?" for _ in doomed)
                self._conn.execute(
                    f"DELETE FROM process_instances WHERE correlation_id IN ({placeholders})",
                    doomed,
                )
                self._conn.execute(
                    f"DELETE FROM correlations WHERE correlation_id IN ({placeholders})",
                    doomed,
                )
        return doomed

    # ------------------------------------------------------------------
    # Repository API
    async def create_process_instance(self, instance: ProcessInstance) -> None:
        await self._run(self._create, instance)

    async def get_process_instance(self, process_instance_id: str) -> ProcessInstance | None:
        return await self._run(self._fetch_instance, process_instance_id)

    async def get_correlation(self, correlation_id: str) -> Correlation | None:
        return await self._run(self._get_correlation, correlation_id)

    async def scan_correlations(
        self, criteria: CorrelationFilter, offset: int = 0, limit: int | None = None
    ) -> list[Correlation]:
        return await self._run(self._scan_correlations, criteria, offset, limit)

    async def scan_process_instances(
        self, criteria: ProcessInstanceFilter, offset: int = 0, limit: int | None = None
    ) -> list[ProcessInstance]:
        return await self._run(self._scan_instances, criteria, offset, limit)

    async def transition_process_instance(
        self,
        process_instance_id: str,
        correlation_id: str,
        state: ProcessInstanceState,
        error: Any = None,
        finished_at: datetime | None = None,
    ) -> ProcessInstance:
        return await self._run(
            self._transition,
            process_instance_id,
            correlation_id,
            state,
            error,
            finished_at or utcnow(),
        )

    async def delete_correlations_by_process_model(self, process_model_id: str) -> list[str]:
        return await self._run(self._delete_by_model, process_model_id)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)
