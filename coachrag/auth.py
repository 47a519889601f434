"""Bearer-token authentication dependencies.

Tokens are resolved to owner ids by a TokenAuthenticator built from
settings.AUTH_TOKENS; the resolved owner id scopes every store call. Operator
endpoints (retention) require settings.ADMIN_TOKEN instead.
"""
import hmac
import logging
from functools import lru_cache
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from coachrag.config import settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class TokenAuthenticator:
    """Resolves opaque bearer tokens to owner ids."""

    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    def resolve(self, token: str) -> Optional[str]:
        for known, owner in self._tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                return owner
        return None


@lru_cache(maxsize=1)
def get_authenticator() -> TokenAuthenticator:
    return TokenAuthenticator(settings.auth_token_map)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_owner(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authenticator: TokenAuthenticator = Depends(get_authenticator),
) -> str:
    """Dependency returning the authenticated owner id.

    Raises:
        HTTPException 401: Missing or unknown token.
    """
    if not credentials:
        raise _unauthorized("Authentication required")
    owner_id = authenticator.resolve(credentials.credentials)
    if owner_id is None:
        logger.warning("rejected unknown bearer token", extra={"ctx_event": "security.bad_token"})
        raise _unauthorized("Invalid authentication token")
    return owner_id


def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> None:
    """Dependency guarding operator endpoints.

    Raises:
        HTTPException 503: No admin token configured.
        HTTPException 401: Missing or wrong token.
    """
    if not settings.ADMIN_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator endpoints are not configured.",
        )
    if not credentials or not hmac.compare_digest(
        credentials.credentials.encode(), settings.ADMIN_TOKEN.encode()
    ):
        logger.warning("rejected operator request", extra={"ctx_event": "security.bad_admin_token"})
        raise _unauthorized("Operator authentication required")
