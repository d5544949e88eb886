"""FastAPI application for the chatguard admission-control layer.

Every ``/v1`` route passes the API gate (blacklist, whitelist, per-address
quota) before its own category gate runs, except inbound chat ingestion,
which only checks the IP blacklist before the spam detector. The websocket channel is admitted
by the connection controller before the handshake completes, and the
``/admin`` routes expose stats and manual list management to operators.

One AntiSpamGuard instance is owned by the application (``app.state.guard``)
and injected into handlers; it is built on startup and shut down with the app.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from fastapi import APIRouter, Depends, FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatguard.auth import AdminAuthError, validate_admin_key
from chatguard.broadcast import BroadcastDecision
from chatguard.config import GuardConfig, load_config
from chatguard.errors import AdmissionDenied
from chatguard.guard import AntiSpamGuard, get_client_ip
from chatguard.ledger import AdmissionDecision
from chatguard.models import (
    AcceptedResponse,
    AdmissionInfo,
    AuthAttemptRequest,
    AutoReplySentRequest,
    BlacklistInfo,
    BroadcastAcceptedResponse,
    BroadcastRequest,
    ChangeResponse,
    ErrorDetail,
    ErrorResponse,
    InboundMessageRequest,
    InboundScreeningResponse,
    IPBlacklistRequest,
    IPRequest,
    SendMessageRequest,
    StatsResponse,
    UserBlacklistRequest,
    UserRequest,
)
from chatguard.telemetry import log_admission, setup_logging

CONFIG_PATH = os.getenv("CHATGUARD_CONFIG")

# Websocket close code for a refused handshake (RFC 6455 policy violation).
WS_POLICY_VIOLATION = 1008


def build_guard(config_path: Optional[str] = None) -> AntiSpamGuard:
    """Build the guard from a JSON config file, or from defaults when none is given."""
    config = load_config(config_path) if config_path else GuardConfig()
    return AntiSpamGuard(config)


def _ensure_guard(application: FastAPI) -> AntiSpamGuard:
    guard = getattr(application.state, "guard", None)
    if guard is None:
        guard = build_guard(CONFIG_PATH)
        application.state.guard = guard
    return guard


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Build the guard, configure logging and run the janitor for the app's lifetime."""
    guard = _ensure_guard(application)
    setup_logging(guard.config.log_file)
    guard.start()
    try:
        yield
    finally:
        await guard.shutdown()


def get_guard(request: Request) -> AntiSpamGuard:
    return _ensure_guard(request.app)


def client_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    trusted = _ensure_guard(request.app).config.trusted_proxies
    return get_client_ip(request.headers, peer, trusted)


def _apply_rate_headers(
    response: Response, decision: Union[AdmissionDecision, BroadcastDecision]
) -> None:
    """Attach quota headers for admitted requests (whitelisted ones carry none)."""
    if decision.limit is None:
        return
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    if decision.remaining is not None:
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    if decision.reset_at is not None:
        response.headers["X-RateLimit-Reset"] = str(int(decision.reset_at))


def _admission_info(decision: AdmissionDecision) -> AdmissionInfo:
    return AdmissionInfo(remaining=decision.remaining, reset_at=decision.reset_at)


def api_gate(
    request: Request,
    response: Response,
    guard: AntiSpamGuard = Depends(get_guard),
) -> AdmissionDecision:
    """Blacklist, whitelist, then the per-address API quota."""
    decision = guard.enforce_request("api", client_ip(request))
    _apply_rate_headers(response, decision)
    return decision


def ingest_gate(request: Request, guard: AntiSpamGuard = Depends(get_guard)) -> None:
    guard.enforce_address("wa_user", client_ip(request))


def require_admin(request: Request, guard: AntiSpamGuard = Depends(get_guard)) -> str:
    """Check the operator key when admin authentication is enabled."""
    admin = guard.config.admin
    if not admin.enabled:
        return "anonymous"
    return validate_admin_key(request.headers.get("x-admin-key"), admin.api_keys)


def _error_response(
    status: int,
    code: str,
    message: str,
    retry_after: Optional[int] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message, retry_after=retry_after),
    )
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return JSONResponse(
        status_code=status,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


# --- Gated business routes ---

v1 = APIRouter(prefix="/v1", dependencies=[Depends(api_gate)])


@v1.get("/health")
def health() -> dict:
    return {"status": "ok"}


@v1.post("/auth/attempt", response_model=AcceptedResponse)
def auth_attempt(
    body: AuthAttemptRequest,
    request: Request,
    response: Response,
    guard: AntiSpamGuard = Depends(get_guard),
) -> AcceptedResponse:
    """Admit one login/register attempt; credential checks happen downstream."""
    decision = guard.enforce_request("auth", client_ip(request))
    _apply_rate_headers(response, decision)
    return AcceptedResponse(admission=_admission_info(decision))


@v1.post("/messages/send", response_model=AcceptedResponse, status_code=202)
def send_message(
    body: SendMessageRequest,
    request: Request,
    response: Response,
    guard: AntiSpamGuard = Depends(get_guard),
) -> AcceptedResponse:
    """Admit an outbound message; the quota is per chat session."""
    decision = guard.enforce_request("message", client_ip(request), key=body.session_id)
    _apply_rate_headers(response, decision)
    return AcceptedResponse(admission=_admission_info(decision))


@v1.post("/broadcasts", response_model=BroadcastAcceptedResponse, status_code=202)
def create_broadcast(
    body: BroadcastRequest,
    response: Response,
    guard: AntiSpamGuard = Depends(get_guard),
) -> BroadcastAcceptedResponse:
    """Admit a broadcast and tell the caller how to pace its sends."""
    decision = guard.enforce_broadcast(body.session_id, len(body.recipients))
    _apply_rate_headers(response, decision)
    return BroadcastAcceptedResponse(
        admission=AdmissionInfo(remaining=decision.remaining, reset_at=decision.reset_at),
        recipients=len(body.recipients),
        delay_between_messages=decision.delay_between_messages or 0.0,
    )


# --- Inbound chat ingestion ---

# Inbound screening has its own per-user detector, so only the IP blacklist
# applies here; the per-address API quota does not.
ingest = APIRouter(prefix="/v1", dependencies=[Depends(ingest_gate)])


@ingest.post("/messages/inbound", response_model=InboundScreeningResponse)
def screen_inbound(
    body: InboundMessageRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> InboundScreeningResponse:
    """Classify one inbound chat message for the ingestion layer."""
    screening = guard.screen_inbound(body.session_id, body.chat_user)
    return InboundScreeningResponse(
        action=screening.action,
        message_count=screening.verdict.message_count if screening.verdict else None,
        can_auto_reply=screening.can_auto_reply,
    )


@ingest.post("/messages/auto-reply-sent", status_code=204)
def auto_reply_sent(
    body: AutoReplySentRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> Response:
    guard.mark_auto_reply_sent(body.session_id, body.chat_user)
    return Response(status_code=204)


# --- Operator surface ---

admin = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


@admin.get("/stats", response_model=StatsResponse)
def stats(guard: AntiSpamGuard = Depends(get_guard)) -> StatsResponse:
    return StatsResponse(tracked=guard.get_stats())


@admin.get("/blacklist", response_model=BlacklistInfo)
def blacklist_info(guard: AntiSpamGuard = Depends(get_guard)) -> BlacklistInfo:
    return BlacklistInfo(**guard.get_blacklist_info())


@admin.post("/blacklist/ip", response_model=ChangeResponse)
def add_ip_blacklist(
    body: IPBlacklistRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> ChangeResponse:
    guard.blacklist_ip(body.ip, reason=body.reason, duration=body.duration_seconds)
    return ChangeResponse(changed=True)


@admin.delete("/blacklist/ip", response_model=ChangeResponse)
def remove_ip_blacklist(
    body: IPRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> ChangeResponse:
    return ChangeResponse(changed=guard.unblacklist_ip(body.ip))


@admin.post("/blacklist/user", response_model=ChangeResponse)
def add_user_blacklist(
    body: UserBlacklistRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> ChangeResponse:
    guard.blacklist_user(
        body.session_id, body.chat_user, reason=body.reason, duration=body.duration_seconds
    )
    return ChangeResponse(changed=True)


@admin.delete("/blacklist/user", response_model=ChangeResponse)
def remove_user_blacklist(
    body: UserRequest,
    guard: AntiSpamGuard = Depends(get_guard),
) -> ChangeResponse:
    return ChangeResponse(changed=guard.unblacklist_user(body.session_id, body.chat_user))


@admin.post("/whitelist", response_model=ChangeResponse)
def add_whitelist(body: IPRequest, guard: AntiSpamGuard = Depends(get_guard)) -> ChangeResponse:
    guard.whitelist_ip(body.ip)
    return ChangeResponse(changed=True)


@admin.delete("/whitelist", response_model=ChangeResponse)
def remove_whitelist(body: IPRequest, guard: AntiSpamGuard = Depends(get_guard)) -> ChangeResponse:
    return ChangeResponse(changed=guard.unwhitelist_ip(body.ip))


@admin.delete("/limits", response_model=ChangeResponse)
def clear_limits(guard: AntiSpamGuard = Depends(get_guard)) -> ChangeResponse:
    guard.clear_all_limits()
    return ChangeResponse(changed=True)


# --- Persistent channel ---

channel = APIRouter()


@channel.websocket("/ws")
async def websocket_channel(websocket: WebSocket) -> None:
    """Admit the connection before accepting it and release it on disconnect."""
    guard = _ensure_guard(websocket.app)
    peer = websocket.client.host if websocket.client else None
    ip = get_client_ip(websocket.headers, peer, guard.config.trusted_proxies)
    connection_id = uuid.uuid4().hex

    decision = guard.admit_connection(ip, connection_id)
    if not decision.allowed:
        await websocket.close(code=WS_POLICY_VIOLATION, reason=decision.code)
        return

    try:
        await websocket.accept()
        await websocket.send_json({"type": "connected", "connection_id": connection_id})
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        guard.release_connection(ip, connection_id)


def create_app(guard: Optional[AntiSpamGuard] = None) -> FastAPI:
    """Create the application, optionally around an already-built guard."""
    application = FastAPI(title="chatguard", version="0.1.0", lifespan=lifespan)
    if guard is not None:
        application.state.guard = guard

    application.include_router(v1)
    application.include_router(ingest)
    application.include_router(admin)
    application.include_router(channel)

    @application.exception_handler(AdmissionDenied)
    async def admission_denied_handler(request: Request, exc: AdmissionDenied) -> JSONResponse:
        return _error_response(
            exc.status_code, exc.code, exc.detail, retry_after=exc.retry_after_seconds
        )

    @application.exception_handler(AdminAuthError)
    async def admin_auth_handler(request: Request, exc: AdminAuthError) -> JSONResponse:
        log_admission(category="admin", key=client_ip(request), outcome="auth_failed")
        return _error_response(401, "ADMIN_AUTH_FAILED", exc.detail)

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Convert FastAPI's validation errors into our error envelope format."""
        return _error_response(
            422,
            "VALIDATION_ERROR",
            "Request validation failed: {}".format(exc.errors()),
        )

    return application


app = create_app()
