"""Repository abstraction for correlation and process instance records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..contracts import (
    Correlation,
    CorrelationFilter,
    ProcessInstance,
    ProcessInstanceFilter,
    ProcessInstanceState,
)


class CorrelationRepository(Protocol):
    """Protocol for correlation persistence backends.

    Scans return records in insertion order and apply ``offset``/``limit``
    after the filter. ``limit=None`` returns every match.
    """

    async def create_process_instance(self, instance: ProcessInstance) -> None:
        """Insert ``instance``, creating its correlation if unseen.

        Raises ``DuplicateKeyError`` if the id exists and
        ``InvalidReferenceError`` if the parent does not.
        """

    async def get_process_instance(self, process_instance_id: str) -> ProcessInstance | None:
        """Retrieve a process instance by id."""

    async def get_correlation(self, correlation_id: str) -> Correlation | None:
        """Retrieve a correlation with all of its process instances."""

    async def scan_correlations(
        self, criteria: CorrelationFilter, offset: int = 0, limit: int | None = None
    ) -> list[Correlation]:
        """Return matching correlations in creation order."""

    async def scan_process_instances(
        self, criteria: ProcessInstanceFilter, offset: int = 0, limit: int | None = None
    ) -> list[ProcessInstance]:
        """Return matching process instances in creation order."""

    async def transition_process_instance(
        self,
        process_instance_id: str,
        correlation_id: str,
        state: ProcessInstanceState,
        error: Any = None,
        finished_at: datetime | None = None,
    ) -> ProcessInstance:
        """Move a running instance into ``state``.

        Raises ``NotFoundError`` if the instance is absent or belongs to a
        different correlation, and ``InvalidTransitionError`` if it is no
        longer running.
        """

    async def delete_correlations_by_process_model(self, process_model_id: str) -> list[str]:
        """Remove correlations made up solely of ``process_model_id`` instances."""

    async def close(self) -> None:
        """Release backend resources."""
