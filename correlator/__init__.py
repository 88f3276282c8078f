"""Correlator: correlation and process instance tracking for process engines."""

from .contracts import (
    Correlation,
    ProcessInstance,
    ProcessInstanceState,
    QueryOptions,
)
from .errors import (
    CorrelatorError,
    DuplicateKeyError,
    ErrorKind,
    Failure,
    ForbiddenError,
    InvalidReferenceError,
    InvalidTransitionError,
    NotFoundError,
    Ok,
    StoreUnavailableError,
    capture,
)
from .persistence import get_repository
from .security import ClaimsAuthorizationPolicy, Identity
from .service import CorrelationService

__version__ = "0.1.0"
__all__ = [
    "Correlation",
    "ProcessInstance",
    "ProcessInstanceState",
    "QueryOptions",
    "CorrelationService",
    "ClaimsAuthorizationPolicy",
    "Identity",
    "get_repository",
    "CorrelatorError",
    "DuplicateKeyError",
    "ErrorKind",
    "Failure",
    "ForbiddenError",
    "InvalidReferenceError",
    "InvalidTransitionError",
    "NotFoundError",
    "Ok",
    "StoreUnavailableError",
    "capture",
]
