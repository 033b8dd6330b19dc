"""
ProBD Backend - Meeting Service
===============================

What:  Token acquisition for video consultations.
How:   Mints a Stream user token and makes sure the call exists server-side
       before handing both back, so a guest opening an invite link can join a
       call the host has not entered yet.

Three entry points mirror the consultation room's join flow:

    host    POST /meetings/adhoc                      create_adhoc_call()
    member  GET  /meetings/adhoc/{call_id}/token      issue_member_token()
    guest   POST /meetings/adhoc/{call_id}/guest-token issue_guest_token()
"""

import logging
import time
from typing import Optional

from probd.config import settings
from probd.exceptions import PermissionDeniedError, ValidationError
from probd.schemas.identity import Identity
from probd.schemas.meeting import AdhocCall, CallCredentials, RecordingState
from probd.services.stream_service import StreamVideoService, stream_service

logger = logging.getLogger(__name__)

# Fallback ids used when a caller arrives without any identity
DEFAULT_MEMBER_ID = "anonymous_member"
DEFAULT_CREATOR_ID = "admin_creator"

# Call member roles that may control recording
RECORDING_ROLES = frozenset({"admin", "host"})


def new_call_id(user_id: str) -> str:
    """`adhoc-<user>-<epoch ms>`: unique per user per millisecond."""
    return f"adhoc-{user_id}-{int(time.time() * 1000)}"


class MeetingService:

    def __init__(self, video: Optional[StreamVideoService] = None):
        self.video = video or stream_service

    @property
    def call_type(self) -> str:
        return settings.stream_default_call_type

    async def create_adhoc_call(self, creator: Optional[Identity]) -> AdhocCall:
        """
        Host path: create a brand-new ad-hoc call and return a token for it.

        The token carries no expiry, matching the host-side link that stays
        valid for the life of the call.
        """
        creator_id = creator.user_id if creator else DEFAULT_CREATOR_ID
        call_id = new_call_id(creator_id)

        token = self.video.generate_user_token(creator_id)
        await self.video.get_or_create_call(self.call_type, call_id, created_by_id=creator_id)

        logger.info("Ad-hoc call %s created by %s", call_id, creator_id)
        return AdhocCall(
            id=call_id,
            call_id=call_id,
            token=token,
            call_type=self.call_type,
            user_id=creator_id,
        )

    async def _issue(self, call_id: Optional[str], user_id: str) -> CallCredentials:
        target_call_id = call_id or new_call_id(user_id)

        token = self.video.generate_user_token(user_id, settings.stream_token_validity)
        await self.video.get_or_create_call(
            self.call_type,
            target_call_id,
            created_by_id=user_id,
            members=[{"user_id": user_id, "role": "admin"}],
        )

        return CallCredentials(
            token=token,
            call_id=target_call_id,
            call_type=self.call_type,
            user_id=user_id,
        )

    async def issue_member_token(
        self, call_id: Optional[str], member: Optional[Identity]
    ) -> CallCredentials:
        """Authenticated path. Unidentified callers join as `anonymous_member`."""
        user_id = member.user_id if member else DEFAULT_MEMBER_ID
        credentials = await self._issue(call_id, user_id)
        logger.info("Member token issued: call=%s user=%s", credentials.call_id, user_id)
        return credentials

    async def issue_guest_token(self, call_id: Optional[str], user_id: Optional[str]) -> CallCredentials:
        """Guest path: the guest id comes from the request body."""
        if not user_id or not user_id.strip():
            raise ValidationError(message="Missing userId", field="userId")
        credentials = await self._issue(call_id, user_id.strip())
        logger.info("Guest token issued: call=%s user=%s", credentials.call_id, user_id)
        return credentials

    async def set_recording(
        self,
        call_type: str,
        call_id: str,
        caller: Identity,
        active: bool,
    ) -> RecordingState:
        """
        Start or stop recording a call.

        Only a participant holding the `admin` or `host` role on the call may
        do this; roles are read from Stream's member list for the call.
        """
        call = await self.video.get_call(call_type, call_id)
        member_roles = {
            member.get("role")
            for member in call.get("members", [])
            if member.get("user_id") == caller.user_id
        }
        if not member_roles & RECORDING_ROLES:
            raise PermissionDeniedError(
                message="Only the host of this consultation can control recording.",
                context={"call_id": call_id, "user_id": caller.user_id},
            )

        if active:
            await self.video.start_recording(call_type, call_id)
        else:
            await self.video.stop_recording(call_type, call_id)

        logger.info(
            "Recording %s for %s:%s by %s",
            "started" if active else "stopped",
            call_type,
            call_id,
            caller.user_id,
        )
        return RecordingState(call_id=call_id, call_type=call_type, recording=active)


meeting_service = MeetingService()
