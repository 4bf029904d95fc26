"""Pydantic models for authentication."""

from pydantic import BaseModel, Field


class AuthenticatedClient(BaseModel):
    """Caller identified by a validated bearer token."""

    client_id: str | None = Field(default=None, description="OAuth client ID")
    user_id: str | None = Field(default=None, description="Subject of the token")
    scopes: list[str] = Field(default_factory=list, description="Granted scopes")

    def has_any_scope(self, scopes: set[str]) -> bool:
        return bool(scopes.intersection(self.scopes))
