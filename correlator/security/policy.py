"""Authorization policies deciding what an identity may see or change."""

from __future__ import annotations

from typing import Protocol

from ..config import AuthorizationConfig
from ..contracts import ProcessInstance
from .context import Identity


class AuthorizationPolicy(Protocol):
    """Decides visibility and mutation rights for a single identity."""

    def can_read(self, identity: Identity, instance: ProcessInstance) -> bool:
        """Return ``True`` if ``identity`` may see ``instance``."""

    def can_modify(self, identity: Identity, instance: ProcessInstance) -> bool:
        """Return ``True`` if ``identity`` may finish ``instance``."""

    def can_purge(self, identity: Identity, process_model_id: str) -> bool:
        """Return ``True`` if ``identity`` may delete correlations of a model."""

    def owner_of(self, identity: Identity) -> str:
        """Owner recorded on instances created by ``identity``."""


class ClaimsAuthorizationPolicy:
    """Grant access based on token claims and instance ownership.

    Holders of the super-admin claim see and modify everything. Holders of the
    reader claim see everything but may only modify what they own. Everyone
    else is limited to the process instances they started themselves. Purging
    a process model requires the purge claim.
    """

    def __init__(self, config: AuthorizationConfig | None = None) -> None:
        self.config = config or AuthorizationConfig()

    def owner_of(self, identity: Identity) -> str:
        return identity.user_id

    def _owns(self, identity: Identity, instance: ProcessInstance) -> bool:
        return (
            instance.owner_id is not None
            and instance.owner_id == self.owner_of(identity)
        )

    def can_read(self, identity: Identity, instance: ProcessInstance) -> bool:
        if identity.has_claim(self.config.superadmin_claim):
            return True
        if identity.has_claim(self.config.reader_claim):
            return True
        return self._owns(identity, instance)

    def can_modify(self, identity: Identity, instance: ProcessInstance) -> bool:
        if identity.has_claim(self.config.superadmin_claim):
            return True
        return self._owns(identity, instance)

    def can_purge(self, identity: Identity, process_model_id: str) -> bool:
        return identity.has_claim(self.config.purge_claim)
