"""
ProBD Backend - Meeting Schemas
===============================

What:  Request and response shapes for video-call token acquisition.

Field names are camelCase on the wire because the browser SDK wiring reads
`callId`, `callType` and `userId` directly from the response.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CallCredentials(_CamelModel):
    """Everything a client needs to join a Stream call."""
    token: str = Field(description="Stream user token (JWT)")
    call_id: str = Field(description="Stream call id")
    call_type: str = Field(default="default", description="Stream call type")
    user_id: str = Field(description="User id the token was issued for")


class AdhocCall(CallCredentials):
    """Host-side response for a freshly created ad-hoc call."""
    id: str = Field(description="Same value as callId")


class GuestTokenRequest(_CamelModel):
    user_id: Optional[str] = Field(default=None, description="Guest user id (guest_...)")


class RecordingRequest(_CamelModel):
    active: bool = Field(description="True to start recording, false to stop it")


class RecordingState(_CamelModel):
    call_id: str
    call_type: str
    recording: bool
