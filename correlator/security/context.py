"""Identity carried through every correlator operation."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Caller identity as supplied by the identity provider.

    The core never interprets the identity itself; it is handed unchanged to
    the :class:`~correlator.security.policy.AuthorizationPolicy`, which is the
    only place its fields are read.
    """

    model_config = ConfigDict(frozen=True)

    token: str = Field(default="", description="Opaque access token")
    user_id: str = Field(..., description="Subject the token was issued to")
    claims: Dict[str, Any] = Field(default_factory=dict, description="Token claims")

    def has_claim(self, claim: str) -> bool:
        return bool(self.claims.get(claim))
