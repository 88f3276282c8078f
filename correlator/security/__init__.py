"""Identity and authorization for correlation tracking."""

from .context import Identity
from .filter import AuthorizationFilter
from .policy import AuthorizationPolicy, ClaimsAuthorizationPolicy

__all__ = [
    "Identity",
    "AuthorizationFilter",
    "AuthorizationPolicy",
    "ClaimsAuthorizationPolicy",
]
