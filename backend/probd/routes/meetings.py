"""
ProBD Backend - Meeting Route Handlers
======================================

What:  Video-call token endpoints used by the consultation room.

    POST /api/v1/meetings/adhoc                           host creates a call
    GET  /api/v1/meetings/adhoc/{call_id}/token           member joins
    POST /api/v1/meetings/adhoc/{call_id}/guest-token     guest joins by link
    POST /api/v1/meetings/{call_type}/{call_id}/recording start / stop recording

Routes stay thin: identity comes from dependencies, everything else from
MeetingService.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status

from probd.dependencies import get_identity, get_optional_identity
from probd.schemas.common import Envelope, ErrorResponse
from probd.schemas.identity import Identity
from probd.schemas.meeting import (
    AdhocCall,
    CallCredentials,
    GuestTokenRequest,
    RecordingRequest,
    RecordingState,
)
from probd.services.meeting_service import meeting_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/meetings", tags=["Meetings"])

_UPSTREAM_ERRORS = {
    502: {"description": "Video platform failure", "model": ErrorResponse},
    503: {"description": "Video platform circuit open", "model": ErrorResponse},
}


@router.post(
    "/adhoc",
    response_model=Envelope[AdhocCall],
    status_code=status.HTTP_201_CREATED,
    responses=_UPSTREAM_ERRORS,
    summary="Create an ad-hoc consultation call",
)
async def create_adhoc_call(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Envelope[AdhocCall]:
    call = await meeting_service.create_adhoc_call(identity)
    return Envelope(data=call)


@router.get(
    "/adhoc/{call_id}/token",
    response_model=Envelope[CallCredentials],
    responses=_UPSTREAM_ERRORS,
    summary="Get a call token for a member",
)
async def get_member_token(
    call_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Envelope[CallCredentials]:
    credentials = await meeting_service.issue_member_token(call_id, identity)
    return Envelope(data=credentials)


@router.post(
    "/adhoc/{call_id}/guest-token",
    response_model=Envelope[CallCredentials],
    responses={400: {"description": "Missing userId", "model": ErrorResponse}, **_UPSTREAM_ERRORS},
    summary="Get a call token for a guest",
)
async def get_guest_token(
    call_id: str,
    body: Optional[GuestTokenRequest] = None,
) -> Envelope[CallCredentials]:
    credentials = await meeting_service.issue_guest_token(call_id, body.user_id if body else None)
    return Envelope(data=credentials)


@router.post(
    "/{call_type}/{call_id}/recording",
    response_model=Envelope[RecordingState],
    responses={
        401: {"model": ErrorResponse},
        403: {"description": "Caller is not a host of the call", "model": ErrorResponse},
        **_UPSTREAM_ERRORS,
    },
    summary="Start or stop recording",
)
async def set_recording(
    call_type: str,
    call_id: str,
    body: RecordingRequest,
    identity: Identity = Depends(get_identity),
) -> Envelope[RecordingState]:
    state = await meeting_service.set_recording(call_type, call_id, identity, body.active)
    return Envelope(data=state, message="Recording started" if state.recording else "Recording stopped")
