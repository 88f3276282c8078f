"""Service facade combining the registry and the query engine."""

from __future__ import annotations

from typing import Any, List, Optional

from .config import CorrelatorConfig, load_config
from .contracts import Correlation, ProcessInstance, ProcessInstanceState, QueryOptions
from .persistence import CorrelationRepository, get_repository
from .query import CorrelationQueryEngine
from .registry import CorrelationRegistry
from .security import AuthorizationFilter, AuthorizationPolicy, ClaimsAuthorizationPolicy, Identity


class CorrelationService:
    """Single entry point for tracking correlations and process instances.

    Correlations tie a correlation id and its process instances to the
    process model hash each instance ran with. This keeps track of how a
    process model looked at the time a given instance was run. A process
    instance belongs to exactly one correlation; a correlation may hold many
    process instances.
    """

    def __init__(
        self,
        repository: CorrelationRepository,
        policy: AuthorizationPolicy | None = None,
        config: CorrelatorConfig | None = None,
    ) -> None:
        self.config = config or CorrelatorConfig()
        self.repository = repository
        self.auth = AuthorizationFilter(
            policy or ClaimsAuthorizationPolicy(self.config.authorization)
        )
        self.registry = CorrelationRegistry(
            repository, self.auth, store_timeout=self.config.store_timeout
        )
        self.queries = CorrelationQueryEngine(
            repository,
            self.auth,
            config=self.config.query,
            store_timeout=self.config.store_timeout,
        )

    @classmethod
    def from_config(
        cls,
        config: CorrelatorConfig | None = None,
        policy: AuthorizationPolicy | None = None,
    ) -> "CorrelationService":
        config = config or load_config()
        return cls(get_repository(config=config), policy=policy, config=config)

    async def close(self) -> None:
        await self.repository.close()

    # ------------------------------------------------------------------
    # Writes
    async def create_entry(
        self,
        identity: Identity,
        correlation_id: str,
        process_instance_id: str,
        process_model_id: str,
        process_model_hash: str,
        *,
        parent_process_instance_id: Optional[str] = None,
    ) -> ProcessInstance:
        return await self.registry.create_entry(
            identity,
            correlation_id,
            process_instance_id,
            process_model_id,
            process_model_hash,
            parent_process_instance_id=parent_process_instance_id,
        )

    async def finish_process_instance(
        self, identity: Identity, correlation_id: str, process_instance_id: str
    ) -> ProcessInstance:
        return await self.registry.finish_process_instance(
            identity, correlation_id, process_instance_id
        )

    async def finish_process_instance_with_error(
        self,
        identity: Identity,
        correlation_id: str,
        process_instance_id: str,
        error: Any,
    ) -> ProcessInstance:
        return await self.registry.finish_process_instance_with_error(
            identity, correlation_id, process_instance_id, error
        )

    async def delete_correlation_by_process_model_id(
        self, identity: Identity, process_model_id: str
    ) -> list[str]:
        return await self.registry.delete_correlation_by_process_model_id(
            identity, process_model_id
        )

    # ------------------------------------------------------------------
    # Reads
    async def get_all(
        self, identity: Identity, options: Optional[QueryOptions] = None
    ) -> List[Correlation]:
        return await self.queries.get_all(identity, options)

    async def get_active(
        self, identity: Identity, options: Optional[QueryOptions] = None
    ) -> List[Correlation]:
        return await self.queries.get_active(identity, options)

    async def get_by_correlation_id(
        self, identity: Identity, correlation_id: str
    ) -> Correlation:
        return await self.queries.get_by_correlation_id(identity, correlation_id)

    async def get_by_process_model_id(
        self,
        identity: Identity,
        process_model_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[Correlation]:
        return await self.queries.get_by_process_model_id(identity, process_model_id, options)

    async def get_by_process_instance_id(
        self, identity: Identity, process_instance_id: str
    ) -> ProcessInstance:
        return await self.queries.get_by_process_instance_id(identity, process_instance_id)

    async def get_subprocesses_for_process_instance(
        self,
        identity: Identity,
        process_instance_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self.queries.get_subprocesses_for_process_instance(
            identity, process_instance_id, options
        )

    async def get_process_instances_for_correlation(
        self,
        identity: Identity,
        correlation_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self.queries.get_process_instances_for_correlation(
            identity, correlation_id, options
        )

    async def get_process_instances_for_process_model(
        self,
        identity: Identity,
        process_model_id: str,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self.queries.get_process_instances_for_process_model(
            identity, process_model_id, options
        )

    async def get_process_instances_by_state(
        self,
        identity: Identity,
        state: ProcessInstanceState,
        options: Optional[QueryOptions] = None,
    ) -> List[ProcessInstance]:
        return await self.queries.get_process_instances_by_state(identity, state, options)
