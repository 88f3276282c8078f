"""Read side of correlation tracking: authorization-scoped paginated queries."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from .config import QueryConfig
from .contracts import (
    Correlation,
    CorrelationFilter,
    ProcessInstance,
    ProcessInstanceFilter,
    ProcessInstanceState,
    QueryOptions,
)
from .errors import NotFoundError
from .persistence import CorrelationRepository
from .persistence.timeouts import bounded
from .security import AuthorizationFilter, Identity

logger = logging.getLogger(__name__)

T = TypeVar("T")

PageFetcher = Callable[[int, int], Awaitable[List[T]]]


class CorrelationQueryEngine:
    """Serves the read queries over correlations and process instances.

    Visibility filtering happens before pagination: store pages of
    ``scan_batch_size`` records are read and filtered until ``offset`` visible
    records have been skipped and ``limit`` visible records collected.
    """

    def __init__(
        self,
        repository: CorrelationRepository,
        auth: AuthorizationFilter,
        config: QueryConfig | None = None,
        store_timeout: float = 5.0,
    ) -> None:
        self._repository = repository
        self._auth = auth
        self._config = config or QueryConfig()
        self._timeout = store_timeout

    def resolve_limit(self, options: QueryOptions) -> int:
        """Effective page size: ``0`` means the default, anything is capped."""
        limit = options.limit or self._config.default_limit
        return min(limit, self._config.max_limit)

    async def _collect_visible(
        self,
        fetch: PageFetcher[T],
        visible: Callable[[List[T]], List[T]],
        options: Optional[QueryOptions],
        operation: str,
    ) -> List[T]:
        options = options or QueryOptions()
        limit = self.resolve_limit(options)
        batch = self._config.scan_batch_size
        to_skip = options.offset
        store_offset = 0
        result: List[T] = []

        while len(result) < limit:
            page = await bounded(fetch(store_offset, batch), self._timeout, operation)
            store_offset += len(page)
            for record in visible(page):
                if to_skip:
                    to_skip -= 1
                    continue
                result.append(record)
                if len(result) == limit:
                    break
            if len(page) < batch:
                break

        logger.debug(
            f"{operation} returned {len(result)} record(s) "
            f"(offset={options.offset}, limit={limit})"
        )
        return result

    async def _scan_correlations(
        self, identity: Identity, criteria: CorrelationFilter, options: Optional[QueryOptions]
    ) -> List[Correlation]:
        def _visible(page: List[Correlation]) -> List[Correlation]:
            correlations = self._auth.filter_correlations(identity, page)
            if criteria.process_model_id is None:
                return correlations
            # the matching instance itself must be visible, not just a sibling
            return [
                c
                for c in correlations
                if any(
                    i.process_model_id == criteria.process_model_id
                    for i in c.process_instances
                )
            ]

        return await self._collect_visible(
            lambda offset, limit: self._repository.scan_correlations(criteria, offset, limit),
            _visible,
            options,
            "scan_correlations",
        )

    async def _scan_instances(
        self,
        identity: Identity,
        criteria: ProcessInstanceFilter,
        options: Optional[QueryOptions],
    ) -> List[ProcessInstance]:
        return await self._collect_visible(
            lambda offset, limit: self._repository.scan_process_instances(
                criteria, offset, limit
            ),
            lambda page: self._auth.filter_process_instances(identity, page),
            options,
            "scan_process_instances",
        )

    # ------------------------------------------------------------------
    # Correlation queries
    async def get_all(
        self, identity: Identity, options: Optional[QueryOptions] = None
    ) -> List[Correlation]:
        return await self._scan_correlations(identity, CorrelationFilter(), options)

    async def get_active(
        self, identity: Identity, options: Optional[QueryOptions] = None
    ) -> List[Correlation]:
        """Correlations with at least one running process instance."""
        return await self._scan_correlations(
            identity, CorrelationFilter(active_only=True), options
        )

    async def get_by_correlation_id(
        self, identity: Identity, correlation_id: str
    ) -> Correlation:
        correlation = await bounded(
            self._repository.get_correlation(correlation_id),
            self._timeout,
            "get_correlation",
        )
        visible = (
            self._auth.filter_correlation(identity, correlation)
            if correlation is not None
            else None
        )
        if visible is None:
            raise NotFoundError(correlation_id, f"correlation {correlation_id!r} not found")
        return visible

    async def get_by_process_model_id(
        self,
        identity: Identity,
        process_model_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[Correlation]:
        """Correlations containing at least one instance of ``process_model_id``."""
        return await self._scan_correlations(
            identity, CorrelationFilter(process_model_id=process_model_id), options
        )

    # ------------------------------------------------------------------
    # Process instance queries
    async def get_by_process_instance_id(
        self, identity: Identity, process_instance_id: str
    ) -> ProcessInstance:
        instance = await bounded(
            self._repository.get_process_instance(process_instance_id),
            self._timeout,
            "get_process_instance",
        )
        return self._auth.ensure_visible(identity, instance, process_instance_id)

    async def get_subprocesses_for_process_instance(
        self,
        identity: Identity,
        process_instance_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        """Direct children of ``process_instance_id``; grandchildren are excluded."""
        return await self._scan_instances(
            identity,
            ProcessInstanceFilter(parent_process_instance_id=process_instance_id),
            options,
        )

    async def get_process_instances_for_correlation(
        self,
        identity: Identity,
        correlation_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self._scan_instances(
            identity, ProcessInstanceFilter(correlation_id=correlation_id), options
        )

    async def get_process_instances_for_process_model(
        self,
        identity: Identity,
        process_model_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self._scan_instances(
            identity, ProcessInstanceFilter(process_model_id=process_model_id), options
        )

    async def get_process_instances_by_state(
        self,
        identity: Identity,
        state: ProcessInstanceState,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self._scan_instances(
            identity, ProcessInstanceFilter(state=ProcessInstanceState(state)), options
        )
