"""
ProBD Backend - Auth Route Handlers
===================================

What:  Guest sessions for private-session links, the "who am I" probe, and
       the client/professional role switch.
"""

import logging

from fastapi import APIRouter, Depends, status

from probd.dependencies import get_identity
from probd.schemas.common import Envelope, ErrorResponse
from probd.schemas.identity import GuestSessionRequest, Identity, RoleSwitchRequest, SessionGrant
from probd.services.identity_service import identity_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])


@router.post(
    "/guest",
    response_model=Envelope[SessionGrant],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
    summary="Join as a guest",
)
async def create_guest_session(body: GuestSessionRequest) -> Envelope[SessionGrant]:
    identity, token, ttl = identity_service.create_guest_session(body.name)
    return Envelope(
        data=SessionGrant(user=identity, access_token=token, expires_in=ttl),
        message="Guest session created",
    )


@router.get(
    "/me",
    response_model=Envelope[Identity],
    responses={401: {"model": ErrorResponse}},
    summary="Current identity",
)
async def whoami(identity: Identity = Depends(get_identity)) -> Envelope[Identity]:
    return Envelope(data=identity)


@router.post(
    "/role",
    response_model=Envelope[SessionGrant],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Switch between client and professional views",
)
async def switch_role(
    body: RoleSwitchRequest,
    identity: Identity = Depends(get_identity),
) -> Envelope[SessionGrant]:
    updated, token, ttl = identity_service.switch_role(identity, body.role)
    return Envelope(data=SessionGrant(user=updated, access_token=token, expires_in=ttl))
