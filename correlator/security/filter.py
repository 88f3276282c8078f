"""Authorization filter applied to every read and write."""

from __future__ import annotations

import logging
from typing import Iterable, List

from ..contracts import Correlation, ProcessInstance
from ..errors import ForbiddenError, NotFoundError
from .context import Identity
from .policy import AuthorizationPolicy

logger = logging.getLogger(__name__)


class AuthorizationFilter:
    """Narrows record sets to what an identity may see.

    Filtering is deterministic and never mutates the records handed in.
    """

    def __init__(self, policy: AuthorizationPolicy) -> None:
        self.policy = policy

    def owner_of(self, identity: Identity) -> str:
        return self.policy.owner_of(identity)

    def filter_process_instances(
        self, identity: Identity, records: Iterable[ProcessInstance]
    ) -> List[ProcessInstance]:
        return [r for r in records if self.policy.can_read(identity, r)]

    def filter_correlation(
        self, identity: Identity, correlation: Correlation
    ) -> Correlation | None:
        """Return ``correlation`` narrowed to visible instances, or ``None``."""
        visible = self.filter_process_instances(identity, correlation.process_instances)
        if not visible:
            return None
        if len(visible) == len(correlation.process_instances):
            return correlation
        return correlation.narrowed_to(visible)

    def filter_correlations(
        self, identity: Identity, correlations: Iterable[Correlation]
    ) -> List[Correlation]:
        result: List[Correlation] = []
        for correlation in correlations:
            narrowed = self.filter_correlation(identity, correlation)
            if narrowed is not None:
                result.append(narrowed)
        return result

    def ensure_visible(
        self, identity: Identity, instance: ProcessInstance | None, identifier: str
    ) -> ProcessInstance:
        """Return ``instance`` or raise :class:`NotFoundError` if hidden or absent."""
        if instance is None or not self.policy.can_read(identity, instance):
            raise NotFoundError(identifier, f"process instance {identifier!r} not found")
        return instance

    def ensure_modifiable(self, identity: Identity, instance: ProcessInstance) -> None:
        if not self.policy.can_modify(identity, instance):
            logger.warning(
                f"Identity {self.owner_of(identity)} denied changes to process instance "
                f"{instance.process_instance_id}"
            )
            raise ForbiddenError(
                instance.process_instance_id,
                f"not permitted to modify process instance {instance.process_instance_id!r}",
            )

    def ensure_can_purge(self, identity: Identity, process_model_id: str) -> None:
        if not self.policy.can_purge(identity, process_model_id):
            logger.warning(
                f"Identity {self.owner_of(identity)} denied purge of process model {process_model_id}"
            )
            raise ForbiddenError(
                process_model_id,
                f"not permitted to delete correlations of process model {process_model_id!r}",
            )
