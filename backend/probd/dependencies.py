"""
ProBD Backend - Route Dependencies
==================================

What:  FastAPI dependencies that resolve the caller from request headers.

    Authorization: Bearer <session jwt>
    X-User-ID: <member or guest id>        (legacy clients)
    X-User-Name: <display name>            (optional, with X-User-ID)
"""

from typing import Optional

from fastapi import Depends, Header

from probd.exceptions import AuthenticationError
from probd.schemas.identity import Identity
from probd.services.identity_service import identity_service


async def get_optional_identity(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> Optional[Identity]:
    """The caller's identity, or None when no credential was presented."""
    return identity_service.resolve_identity(
        authorization=authorization,
        x_user_id=x_user_id,
        name=x_user_name,
    )


async def get_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    if identity is None:
        raise AuthenticationError(message="Please sign in or join as a guest first.")
    return identity
