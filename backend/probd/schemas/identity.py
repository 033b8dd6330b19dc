"""
ProBD Backend - Identity Schemas
================================

What:  Who is calling: a signed-in member, a professional, or a guest who
       typed a display name on the private-session gate.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

GUEST_PREFIX = "guest_"


class Role(str, Enum):
    USER = "USER"
    PROFESSIONAL = "PROFESSIONAL"
    ADMIN = "ADMIN"


class Identity(BaseModel):
    """
    Resolved caller identity.

    `is_guest` is derived from the id prefix so an identity built from a bare
    `X-User-ID` header is classified the same way as one built from a token.
    """
    user_id: str = Field(description="Stable user id; guests start with 'guest_'")
    name: str = Field(default="Premium Member", description="Display name shown in the call")
    role: Role = Field(default=Role.USER)
    is_guest: bool = Field(default=False)

    model_config = {"frozen": True}


class GuestSessionRequest(BaseModel):
    name: str = Field(min_length=1, max_length=80, description="Display name for the guest")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Guest name must not be blank")
        return stripped


class RoleSwitchRequest(BaseModel):
    role: Role


class SessionGrant(BaseModel):
    """Identity plus the bearer token the client stores for later calls."""
    user: Identity
    access_token: str
    token_type: str = Field(default="bearer")
    expires_in: int = Field(description="Token lifetime in seconds")
