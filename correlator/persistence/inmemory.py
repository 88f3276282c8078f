"""In-memory implementation of the correlation repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from itertools import islice
from typing import Any, Dict, Iterable, List, Tuple

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
from ..errors import DuplicateKeyError, InvalidReferenceError, NotFoundError
from .repository import CorrelationRepository


def _page(items: Iterable[Any], offset: int, limit: int | None) -> list[Any]:
    stop = None if limit is None else offset + limit
    return list(islice(items, offset, stop))


class InMemoryCorrelationRepository(CorrelationRepository):
    """Store correlation state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        # dicts keep insertion order, which is the scan order
        self._instances: Dict[str, ProcessInstance] = {}
        self._correlations: Dict[str, datetime] = {}
        self._by_correlation: Dict[str, Dict[str, None]] = {}
        self._by_parent: Dict[str, Dict[str, None]] = {}
        self._by_correlation_state: Dict[
            Tuple[str, ProcessInstanceState], Dict[str, None]
        ] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Index maintenance
    def _index(self, instance: ProcessInstance) -> None:
        pid = instance.process_instance_id
        self._by_correlation.setdefault(instance.correlation_id, {})[pid] = None
        if instance.parent_process_instance_id is not None:
            self._by_parent.setdefault(instance.parent_process_instance_id, {})[pid] = None
        key = (instance.correlation_id, instance.state)
        self._by_correlation_state.setdefault(key, {})[pid] = None

    def _unindex_state(self, instance: ProcessInstance) -> None:
        key = (instance.correlation_id, instance.state)
        bucket = self._by_correlation_state.get(key)
        if bucket is not None:
            bucket.pop(instance.process_instance_id, None)
            if not bucket:
                del self._by_correlation_state[key]

    def _is_active(self, correlation_id: str) -> bool:
        return bool(
            self._by_correlation_state.get((correlation_id, ProcessInstanceState.running))
        )

    def _correlation_instances(self, correlation_id: str) -> List[ProcessInstance]:
        return [self._instances[pid] for pid in self._by_correlation.get(correlation_id, {})]

    def _build_correlation(self, correlation_id: str) -> Correlation:
        return Correlation(
            correlation_id=correlation_id,
            created_at=self._correlations[correlation_id],
            process_instances=self._correlation_instances(correlation_id),
        )

    # ------------------------------------------------------------------
    async def create_process_instance(self, instance: ProcessInstance) -> None:
        async with self._lock:
            pid = instance.process_instance_id
            if pid in self._instances:
                raise DuplicateKeyError(pid, f"process instance {pid!r} already exists")
            if pid in self._by_parent:
                # a purged id still named as parent by surviving subprocesses
                raise DuplicateKeyError(
                    pid, f"process instance id {pid!r} is still referenced as a parent"
                )
            parent_id = instance.parent_process_instance_id
            if parent_id is not None and parent_id not in self._instances:
                raise InvalidReferenceError(
                    parent_id, f"parent process instance {parent_id!r} does not exist"
                )
            self._correlations.setdefault(instance.correlation_id, instance.created_at)
            self._instances[pid] = instance
            self._index(instance)

    async def get_process_instance(self, process_instance_id: str) -> ProcessInstance | None:
        return self._instances.get(process_instance_id)

    async def get_correlation(self, correlation_id: str) -> Correlation | None:
        async with self._lock:
            if correlation_id not in self._correlations:
                return None
            return self._build_correlation(correlation_id)

    async def scan_correlations(
        self, criteria: CorrelationFilter, offset: int = 0, limit: int | None = None
    ) -> list[Correlation]:
        async with self._lock:
            def _matches(correlation_id: str) -> bool:
                if criteria.active_only and not self._is_active(correlation_id):
                    return False
                if criteria.process_model_id is not None:
                    return any(
                        i.process_model_id == criteria.process_model_id
                        for i in self._correlation_instances(correlation_id)
                    )
                return True

            ids = _page(filter(_matches, self._correlations), offset, limit)
            return [self._build_correlation(cid) for cid in ids]

    async def scan_process_instances(
        self, criteria: ProcessInstanceFilter, offset: int = 0, limit: int | None = None
    ) -> list[ProcessInstance]:
        async with self._lock:
            if criteria.parent_process_instance_id is not None:
                candidates: Iterable[str] = self._by_parent.get(
                    criteria.parent_process_instance_id, {}
                )
            elif criteria.correlation_id is not None:
                candidates = self._by_correlation.get(criteria.correlation_id, {})
            else:
                candidates = self._instances
            matches = (
                self._instances[pid]
                for pid in candidates
                if criteria.matches(self._instances[pid])
            )
            return _page(matches, offset, limit)

    async def transition_process_instance(
        self,
        process_instance_id: str,
        correlation_id: str,
        state: ProcessInstanceState,
        error: Any = None,
        finished_at: datetime | None = None,
    ) -> ProcessInstance:
        async with self._lock:
            current = self._instances.get(process_instance_id)
            if current is None or current.correlation_id != correlation_id:
                raise NotFoundError(
                    process_instance_id,
                    f"process instance {process_instance_id!r} not found in "
                    f"correlation {correlation_id!r}",
                )
            transition(current.state, state, process_instance_id)
            updated = current.model_copy(
                update={
                    "state": state,
                    "error": (
                        serialize_error(error)
                        if state is ProcessInstanceState.error
                        else None
                    ),
                    "finished_at": finished_at or utcnow(),
                }
            )
            self._unindex_state(current)
            self._instances[process_instance_id] = updated
            self._index(updated)
            return updated

    async def delete_correlations_by_process_model(self, process_model_id: str) -> list[str]:
        async with self._lock:
            doomed = [
                cid
                for cid in self._correlations
                if self._by_correlation.get(cid)
                and all(
                    i.process_model_id == process_model_id
                    for i in self._correlation_instances(cid)
                )
            ]
            for cid in doomed:
                for instance in self._correlation_instances(cid):
                    pid = instance.process_instance_id
                    self._unindex_state(instance)
                    parent_id = instance.parent_process_instance_id
                    if parent_id is not None and parent_id in self._by_parent:
                        self._by_parent[parent_id].pop(pid, None)
                        if not self._by_parent[parent_id]:
                            del self._by_parent[parent_id]
                    del self._instances[pid]
                del self._by_correlation[cid]
                del self._correlations[cid]
            return doomed

    async def close(self) -> None:
        pass
