"""Coordinator configuration and logging setup."""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class CoordinatorConfig(BaseModel):
    """Configuration for the live coordination core."""

    jwt_secret: str = Field(min_length=8)
    jwt_algorithm: str = "HS256"
    help_request_ttl_seconds: Optional[int] = Field(default=86400, ge=1)
    require_pending_ask: bool = True
    suggestion_limit: int = Field(default=10, ge=1)
    points_per_resolution: int = Field(default=10, ge=0)
    outcome_history: int = Field(default=100, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "CoordinatorConfig":
        """
        Build a config from FIXIT_* environment variables.

        FIXIT_JWT_SECRET is required. FIXIT_HELP_REQUEST_TTL_SECONDS=0
        disables help request expiry.
        """
        env = os.environ if environ is None else environ
        secret = env.get("FIXIT_JWT_SECRET", "")
        if not secret:
            raise ValueError("FIXIT_JWT_SECRET is not set")

        values: dict = {"jwt_secret": secret}
        if env.get("FIXIT_JWT_ALGORITHM"):
            values["jwt_algorithm"] = env["FIXIT_JWT_ALGORITHM"]
        if env.get("FIXIT_HELP_REQUEST_TTL_SECONDS"):
            ttl = int(env["FIXIT_HELP_REQUEST_TTL_SECONDS"])
            values["help_request_ttl_seconds"] = ttl if ttl > 0 else None
        if env.get("FIXIT_REQUIRE_PENDING_ASK"):
            values["require_pending_ask"] = (
                env["FIXIT_REQUIRE_PENDING_ASK"].strip().lower()
                in ("1", "true", "yes", "on")
            )
        if env.get("FIXIT_SUGGESTION_LIMIT"):
            values["suggestion_limit"] = int(env["FIXIT_SUGGESTION_LIMIT"])
        if env.get("FIXIT_POINTS_PER_RESOLUTION"):
            values["points_per_resolution"] = int(env["FIXIT_POINTS_PER_RESOLUTION"])
        if env.get("FIXIT_LOG_LEVEL"):
            values["log_level"] = env["FIXIT_LOG_LEVEL"]
        return cls(**values)


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the fixit_live logger tree."""
    logger = logging.getLogger("fixit_live")
    logger.setLevel(level.upper())
    if not any(getattr(h, "_fixit_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._fixit_handler = True
        logger.addHandler(handler)
