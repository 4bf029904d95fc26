"""Bearer token validation for the stats endpoint."""

from usage_bridge.auth.dependencies import StatsAccess, require_stats_access
from usage_bridge.auth.jwt import JWTValidationError, JWTValidator, get_jwt_validator
from usage_bridge.auth.models import AuthenticatedClient

__all__ = [
    "AuthenticatedClient",
    "JWTValidationError",
    "JWTValidator",
    "StatsAccess",
    "get_jwt_validator",
    "require_stats_access",
]
