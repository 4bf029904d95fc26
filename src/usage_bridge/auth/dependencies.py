"""FastAPI dependencies protecting the stats endpoint."""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from usage_bridge.auth.jwt import JWTValidationError, JWTValidator, get_jwt_validator
from usage_bridge.auth.models import AuthenticatedClient
from usage_bridge.config import Settings, get_settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

STATS_SCOPES = {
    "services": {"abacus.usage.read"},
    "applications": {"abacus.usage.read", "abacus.usage.linux-container.read"},
}


async def require_stats_access(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
    jwt_validator: Annotated[JWTValidator, Depends(get_jwt_validator)],
) -> AuthenticatedClient | None:
    """Check the bearer token of a stats request when the bridge is secured.

    Returns:
        The authenticated client, or None when the bridge is not secured.

    Raises:
        HTTPException: 401 without a valid token, 403 without a read scope.
    """
    if not settings.secured:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        client = jwt_validator.validate_token(credentials.credentials)
    except JWTValidationError as e:
        logger.warning("JWT validation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    if not client.has_any_scope(STATS_SCOPES[settings.bridge_type]):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing required scope",
        )
    return client


StatsAccess = Annotated[AuthenticatedClient | None, Depends(require_stats_access)]
