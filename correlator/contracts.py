"""Core data contracts for correlation tracking."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field

from .errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProcessInstanceState(str, Enum):
    """Lifecycle state of a process instance."""

    running = "running"
    finished = "finished"
    error = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not ProcessInstanceState.running


_ALLOWED_TRANSITIONS = {
    ProcessInstanceState.running: {
        ProcessInstanceState.finished,
        ProcessInstanceState.error,
    },
}


def transition(
    current: ProcessInstanceState,
    target: ProcessInstanceState,
    process_instance_id: str = "",
) -> ProcessInstanceState:
    """Return ``target`` if moving from ``current`` is permitted.

    Only ``running -> finished`` and ``running -> error`` are valid; every
    other pair raises :class:`InvalidTransitionError`.
    """
    if target not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            process_instance_id,
            f"cannot move process instance {process_instance_id!r} "
            f"from {current.value} to {target.value}",
        )
    return target


class ProcessInstance(BaseModel):
    """One run of a process model, tracked inside a correlation."""

    model_config = ConfigDict(frozen=True)

    process_instance_id: str = Field(..., min_length=1)
    correlation_id: str = Field(..., min_length=1)
    process_model_id: str = Field(..., min_length=1)
    process_model_hash: str = Field(..., min_length=1)
    parent_process_instance_id: Optional[str] = Field(default=None, min_length=1)
    state: ProcessInstanceState = ProcessInstanceState.running
    error: Optional[Any] = None
    owner_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_subprocess(self) -> bool:
        return self.parent_process_instance_id is not None


def derive_correlation_state(
    instances: List[ProcessInstance],
) -> ProcessInstanceState:
    """Aggregate state of a correlation from its process instances."""
    states = {instance.state for instance in instances}
    if ProcessInstanceState.running in states:
        return ProcessInstanceState.running
    if ProcessInstanceState.error in states:
        return ProcessInstanceState.error
    return ProcessInstanceState.finished


class Correlation(BaseModel):
    """A business transaction grouping one or more process instances."""

    correlation_id: str
    created_at: datetime = Field(default_factory=utcnow)
    process_instances: List[ProcessInstance] = Field(default_factory=list)
    _stored_state: Optional[ProcessInstanceState] = PrivateAttr(default=None)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def state(self) -> ProcessInstanceState:
        """Derived state; a narrowed copy keeps the state of the full correlation."""
        if self._stored_state is not None:
            return self._stored_state
        return derive_correlation_state(self.process_instances)

    def narrowed_to(self, instances: List[ProcessInstance]) -> "Correlation":
        """Return a copy listing only ``instances`` but keeping the full state."""
        narrowed = Correlation(
            correlation_id=self.correlation_id,
            created_at=self.created_at,
            process_instances=instances,
        )
        narrowed._stored_state = self.state
        return narrowed


class CorrelationFilter(BaseModel):
    """Predicate for correlation scans."""

    process_model_id: Optional[str] = None
    active_only: bool = False


class ProcessInstanceFilter(BaseModel):
    """Predicate for process instance scans; unset fields match anything."""

    correlation_id: Optional[str] = None
    process_model_id: Optional[str] = None
    state: Optional[ProcessInstanceState] = None
    parent_process_instance_id: Optional[str] = None

    def matches(self, instance: ProcessInstance) -> bool:
        if self.correlation_id is not None and instance.correlation_id != self.correlation_id:
            return False
        if (
            self.process_model_id is not None
            and instance.process_model_id != self.process_model_id
        ):
            return False
        if self.state is not None and instance.state != self.state:
            return False
        if (
            self.parent_process_instance_id is not None
            and instance.parent_process_instance_id != self.parent_process_instance_id
        ):
            return False
        return True


class QueryOptions(BaseModel):
    """Pagination options for list queries.

    ``limit=0`` means "use the configured default"; every limit is clamped to
    the configured maximum by the query engine.
    """

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=0, ge=0)


_MISSING_ERROR = {"name": "Error", "message": ""}


def serialize_error(error: Any) -> Any:
    """Convert an error payload into something the stores can persist.

    A failed instance always carries a payload, so ``None`` becomes an empty
    generic error.
    """
    if error is None:
        return dict(_MISSING_ERROR)
    if isinstance(error, BaseException):
        return {"name": type(error).__name__, "message": str(error)}
    return error
