"""Write side of correlation tracking: entry creation and instance lifecycle."""

from __future__ import annotations

import logging
from typing import Any, Optional

from .contracts import ProcessInstance, ProcessInstanceState, serialize_error, utcnow
from .errors import InvalidReferenceError, InvalidTransitionError, NotFoundError
from .persistence import CorrelationRepository
from .persistence.timeouts import bounded
from .security import AuthorizationFilter, Identity

logger = logging.getLogger(__name__)


class CorrelationRegistry:
    """Creates process instance entries and drives their terminal transitions.

    Every store call is bounded by ``store_timeout`` seconds. The registry
    never retries; transient failures surface as ``StoreUnavailableError``.
    """

    def __init__(
        self,
        repository: CorrelationRepository,
        auth: AuthorizationFilter,
        store_timeout: float = 5.0,
    ) -> None:
        self._repository = repository
        self._auth = auth
        self._timeout = store_timeout

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
        """Record a new running process instance.

        The correlation is created on first use. Raises ``DuplicateKeyError``
        for a reused ``process_instance_id`` and ``InvalidReferenceError`` when
        the parent cannot be resolved by ``identity``.
        """
        instance = ProcessInstance(
            process_instance_id=process_instance_id,
            correlation_id=correlation_id,
            process_model_id=process_model_id,
            process_model_hash=process_model_hash,
            parent_process_instance_id=parent_process_instance_id,
            owner_id=self._auth.owner_of(identity),
        )

        if parent_process_instance_id is not None:
            parent = await bounded(
                self._repository.get_process_instance(parent_process_instance_id),
                self._timeout,
                "get_process_instance",
            )
            if parent is None or not self._auth.policy.can_read(identity, parent):
                raise InvalidReferenceError(
                    parent_process_instance_id,
                    f"parent process instance {parent_process_instance_id!r} does not exist",
                )

        await bounded(
            self._repository.create_process_instance(instance),
            self._timeout,
            "create_process_instance",
        )
        logger.info(
            f"Created process instance {process_instance_id} "
            f"(model={process_model_id}, hash={process_model_hash}) "
            f"for correlation_id={correlation_id}"
        )
        return instance

    async def finish_process_instance(
        self, identity: Identity, correlation_id: str, process_instance_id: str
    ) -> ProcessInstance:
        """Mark a running process instance as finished."""
        return await self._finish(
            identity, correlation_id, process_instance_id, ProcessInstanceState.finished
        )

    async def finish_process_instance_with_error(
        self,
        identity: Identity,
        correlation_id: str,
        process_instance_id: str,
        error: Any,
    ) -> ProcessInstance:
        """Mark a running process instance as failed and store ``error`` as given."""
        return await self._finish(
            identity,
            correlation_id,
            process_instance_id,
            ProcessInstanceState.error,
            serialize_error(error),
        )

    async def _finish(
        self,
        identity: Identity,
        correlation_id: str,
        process_instance_id: str,
        state: ProcessInstanceState,
        error: Any = None,
    ) -> ProcessInstance:
        instance = await bounded(
            self._repository.get_process_instance(process_instance_id),
            self._timeout,
            "get_process_instance",
        )
        if instance is None or instance.correlation_id != correlation_id:
            raise NotFoundError(
                process_instance_id,
                f"process instance {process_instance_id!r} not found in "
                f"correlation {correlation_id!r}",
            )
        self._auth.ensure_visible(identity, instance, process_instance_id)
        self._auth.ensure_modifiable(identity, instance)

        try:
            updated = await bounded(
                self._repository.transition_process_instance(
                    process_instance_id,
                    correlation_id,
                    state,
                    error=error,
                    finished_at=utcnow(),
                ),
                self._timeout,
                "transition_process_instance",
            )
        except NotFoundError:
            logger.warning(
                f"Process instance {process_instance_id} vanished before it could be finished"
            )
            raise
        except InvalidTransitionError:
            logger.warning(
                f"Process instance {process_instance_id} is already terminal; "
                f"refusing to mark it {state.value}"
            )
            raise
        logger.info(
            f"Process instance {process_instance_id} is now {state.value} "
            f"for correlation_id={correlation_id}"
        )
        return updated

    async def delete_correlation_by_process_model_id(
        self, identity: Identity, process_model_id: str
    ) -> list[str]:
        """Remove every correlation made up solely of ``process_model_id`` instances.

        Authorization is checked once for the whole purge. The removal is a
        single transaction in every backend; re-running it is harmless.
        """
        self._auth.ensure_can_purge(identity, process_model_id)
        removed = await bounded(
            self._repository.delete_correlations_by_process_model(process_model_id),
            self._timeout,
            "delete_correlations_by_process_model",
        )
        logger.info(
            f"Purged {len(removed)} correlation(s) for process model {process_model_id}"
        )
        return removed
