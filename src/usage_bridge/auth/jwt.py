"""Validation of bearer tokens presented to the stats endpoint using PyJWT."""

import logging
from typing import Any

import jwt
from jwt.exceptions import DecodeError, ExpiredSignatureError, InvalidTokenError

from usage_bridge.auth.models import AuthenticatedClient
from usage_bridge.config import Settings, get_settings

logger = logging.getLogger(__name__)


class JWTValidationError(Exception):
    """Exception raised when JWT validation fails."""

    pass


class JWTValidator:
    """Validates tokens signed with the configured key and algorithm."""

    def __init__(self, settings: Settings | None = None):
        """Initialize JWT validator.

        Args:
            settings: Application settings (uses default if not provided)
        """
        self._settings = settings or get_settings()

    @property
    def algorithm(self) -> str:
        return self._settings.jwtalgo or "HS256"

    def validate_token(self, token: str) -> AuthenticatedClient:
        """Validate a JWT access token.

        Args:
            token: JWT access token string

        Returns:
            AuthenticatedClient with the token scopes

        Raises:
            JWTValidationError: If token validation fails
        """
        if not self._settings.jwtkey:
            raise JWTValidationError("No token verification key configured")

        try:
            claims = jwt.decode(
                token,
                self._settings.jwtkey,
                algorithms=[self.algorithm],
                options={"verify_aud": False, "verify_exp": True},
            )
        except ExpiredSignatureError as e:
            logger.warning("Token has expired")
            raise JWTValidationError("Token has expired") from e
        except DecodeError as e:
            logger.warning("Failed to decode token: %s", e)
            raise JWTValidationError(f"Failed to decode token: {e}") from e
        except InvalidTokenError as e:
            logger.warning("Token validation failed: %s", e)
            raise JWTValidationError(f"Token validation failed: {e}") from e

        return self._claims_to_client(claims)

    def _claims_to_client(self, claims: dict[str, Any]) -> AuthenticatedClient:
        scope = claims.get("scope") or []
        if isinstance(scope, str):
            scope = scope.split()
        return AuthenticatedClient(
            client_id=claims.get("client_id") or claims.get("cid"),
            user_id=claims.get("sub"),
            scopes=list(scope),
        )


_jwt_validator: JWTValidator | None = None


def get_jwt_validator() -> JWTValidator:
    """Get the global JWT validator instance."""
    global _jwt_validator
    if _jwt_validator is None:
        _jwt_validator = JWTValidator()
    return _jwt_validator
