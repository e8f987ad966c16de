"""Authenticated principal resolved from a verified bearer token."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class AuthUser(BaseModel):
    """Caller identity extracted from token claims.

    Tokens are issued elsewhere on the platform; this service only verifies
    them and reads the user id and roles.
    """

    user_id: str = Field(..., min_length=1, max_length=255, description="User ID")
    roles: list[str] = Field(default_factory=list, description="Roles granted to the user")
    claims: dict[str, Any] = Field(default_factory=dict, description="All verified token claims")

    def has_role(self, role: str) -> bool:
        return role in self.roles
