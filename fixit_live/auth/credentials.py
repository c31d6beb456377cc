"""
Bearer credential verification for live connections and HTTP calls.

Tokens are HS256 JWTs signed with the injected FIXIT_JWT_SECRET. The
identity is read from the "id" claim (as issued by the login service) or
the standard "sub" claim.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from fixit_live.config import CoordinatorConfig
from fixit_live.errors import AuthFailure

logger = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def strip_bearer(token: Optional[str]) -> Optional[str]:
    """Accept either a raw token or an 'Authorization: Bearer ...' value."""
    if not token:
        return None
    token = token.strip()
    if token.lower().startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX):].strip()
    return token or None


class CredentialVerifier:
    """Verifies bearer tokens and, for tooling and tests, mints them."""

    def __init__(self, config: CoordinatorConfig):
        self._secret = config.jwt_secret
        self._algorithm = config.jwt_algorithm

    def verify(self, token: Optional[str]) -> str:
        """Return the identity a valid token names; raise AuthFailure otherwise."""
        raw = strip_bearer(token)
        if raw is None:
            raise AuthFailure("Missing bearer credential")
        try:
            claims = jwt.decode(raw, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthFailure("Credential expired")
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected credential: %s", e)
            raise AuthFailure("Invalid credential")

        identity = claims.get("id") or claims.get("sub")
        if not identity:
            raise AuthFailure("Credential carries no identity")
        return str(identity)

    def issue(self, identity: str, expires_in: timedelta = timedelta(days=7)) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode(
            {"id": identity, "iat": now, "exp": now + expires_in},
            self._secret,
            algorithm=self._algorithm,
        )
