"""Request and response models for the chatguard HTTP surface."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AuthAttemptRequest(BaseModel):
    """An authentication attempt to be admitted before credentials are checked."""

    username: str = Field(..., min_length=1)


class SendMessageRequest(BaseModel):
    """Outbound message from a chat session."""

    session_id: str = Field(..., min_length=1, description="Originating chat session")
    to: str = Field(..., min_length=1, description="Recipient chat user")
    text: str = Field(..., min_length=1)


class BroadcastRequest(BaseModel):
    """Broadcast of one message to many recipients."""

    session_id: str = Field(..., min_length=1)
    recipients: List[str] = Field(default_factory=list)
    text: str = Field(..., min_length=1)


class InboundMessageRequest(BaseModel):
    """Inbound chat-user message handed over by the ingestion layer."""

    session_id: str = Field(..., min_length=1)
    chat_user: str = Field(..., min_length=1)


class AutoReplySentRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    chat_user: str = Field(..., min_length=1)


class AdmissionInfo(BaseModel):
    """Quota metadata returned with admitted requests."""

    remaining: Optional[int] = None
    reset_at: Optional[float] = None


class AcceptedResponse(BaseModel):
    status: str = "accepted"
    admission: AdmissionInfo = Field(default_factory=AdmissionInfo)


class BroadcastAcceptedResponse(AcceptedResponse):
    recipients: int
    delay_between_messages: float


class InboundScreeningResponse(BaseModel):
    action: str
    message_count: Optional[int] = None
    can_auto_reply: bool = False


class IPBlacklistRequest(BaseModel):
    ip: str = Field(..., min_length=1)
    reason: str = "Manual"
    duration_seconds: Optional[float] = Field(
        default=None, ge=0, description="Omit or 0 for a permanent entry"
    )


class UserBlacklistRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    chat_user: str = Field(..., min_length=1)
    reason: str = "Manual"
    duration_seconds: Optional[float] = Field(default=24 * 60 * 60, ge=0)


class IPRequest(BaseModel):
    ip: str = Field(..., min_length=1)


class UserRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    chat_user: str = Field(..., min_length=1)


class BlacklistedIP(BaseModel):
    ip: str
    reason: str
    created_at: float
    expires_at: Optional[float] = None
    remaining_seconds: Optional[float] = None


class BlacklistedUser(BaseModel):
    session_id: str
    chat_user: str
    reason: str
    created_at: float
    expires_at: Optional[float] = None
    remaining_seconds: Optional[float] = None


class BlacklistInfo(BaseModel):
    ips: List[BlacklistedIP] = Field(default_factory=list)
    users: List[BlacklistedUser] = Field(default_factory=list)


class StatsResponse(BaseModel):
    tracked: Dict[str, int]


class ChangeResponse(BaseModel):
    changed: bool


class ErrorDetail(BaseModel):
    """Structured error detail."""

    code: str
    message: str
    retry_after: Optional[int] = None


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
