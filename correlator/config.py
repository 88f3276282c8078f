from __future__ import annotations

import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from .constants import (
    DEFAULT_QUERY_LIMIT,
    DEFAULT_SCAN_BATCH_SIZE,
    DEFAULT_STORE_TIMEOUT,
    MAX_QUERY_LIMIT,
    PURGE_CLAIM,
    READER_CLAIM,
    SUPERADMIN_CLAIM,
)


class QueryConfig(BaseModel):
    """Pagination bounds enforced by the query engine."""

    default_limit: int = Field(default=DEFAULT_QUERY_LIMIT, gt=0)
    max_limit: int = Field(default=MAX_QUERY_LIMIT, gt=0)
    scan_batch_size: int = Field(default=DEFAULT_SCAN_BATCH_SIZE, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "QueryConfig":
        if self.default_limit > self.max_limit:
            raise ValueError("default_limit must not exceed max_limit")
        return self


class AuthorizationConfig(BaseModel):
    """Claim names consulted by the default authorization policy."""

    superadmin_claim: str = SUPERADMIN_CLAIM
    reader_claim: str = READER_CLAIM
    purge_claim: str = PURGE_CLAIM


class IdentityConfig(BaseModel):
    """Identity used by the command line tool."""

    user_id: str = "cli"
    token: str = ""
    claims: Dict[str, Any] = Field(default_factory=dict)


class CorrelatorConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    store_timeout: float = Field(default=DEFAULT_STORE_TIMEOUT, gt=0)
    log_level: str = "WARNING"
    query: QueryConfig = QueryConfig()
    authorization: AuthorizationConfig = AuthorizationConfig()
    cli_identity: IdentityConfig = IdentityConfig()


def load_config(path: Optional[str] = None) -> CorrelatorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CORRELATOR_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("CORRELATOR_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CorrelatorConfig(**data)
    else:
        config = CorrelatorConfig()

    env_db_url = os.getenv("CORRELATOR_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
