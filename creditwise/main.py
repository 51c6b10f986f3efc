# creditwise/main.py
"""
CreditWise Chat API.

Conversation endpoints for guests and authenticated users, credits and
profile, health and debug views. All conversation logic lives in the
ChatService; this module maps HTTP to it and errors back to ``{error, code}``.
"""

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, Optional
from contextlib import asynccontextmanager
import asyncio
import json
import logging
import os
import secrets
from datetime import datetime, timezone

from creditwise.core.chat_service import ChatService, SessionView, TurnResult
from creditwise.core.config import settings, validate_required_settings
from creditwise.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ContentPolicyError,
    CreditWiseError,
    FlowError,
    GPTServiceError,
    InsufficientCreditsError,
    OrchestratorError,
    ServiceError,
    SessionError,
    StorageError,
    TransitionFailedError,
    TransitionInProgressError,
    ValidationError,
)
from creditwise.core.logging_config import setup_logging
from creditwise.core.rate_limit_config import get_real_ip, get_rate_limit_message, RATE_LIMIT_TIERS
from creditwise.core.security import Identity, get_identity, is_valid_guest_id

logger = logging.getLogger(__name__)

chat_service: Optional[ChatService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan event handler for startup/shutdown"""
    global chat_service

    logger.info("=" * 60)
    logger.info("CreditWise API starting...")
    logger.info("=" * 60)

    if not validate_required_settings():
        logger.warning("Some environment variables are missing - services may fail on first use")

    if chat_service is None:
        chat_service = ChatService()
    await chat_service.initialize()

    logger.info("Configuration:")
    logger.info(f"  - Remote orchestrator: {'configured' if settings.CHAT_PROXY_URL else 'not configured (local only)'}")
    logger.info(f"  - Starting credits: {settings.STARTING_CREDITS}")
    logger.info("  - GPT and orchestrator clients: will initialize on first use")
    logger.info("CreditWise API ready")

    yield

    logger.info("CreditWise API shutting down...")
    if chat_service is not None:
        await chat_service.shutdown()


app = FastAPI(
    title="CreditWise API",
    description="Financial advisory chat backend with FSM-based conversation flow",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None
)

setup_logging()


def get_chat_service() -> ChatService:
    global chat_service
    if chat_service is None:
        chat_service = ChatService()
    return chat_service


# =============================================================================
# API KEY AUTHENTICATION (admin endpoints)
# =============================================================================

API_KEY_NAME = "X-API-Key"
api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)


def get_api_key():
    """Get API key from settings or generate one for development"""
    api_key = settings.CREDITWISE_API_KEY
    if not api_key:
        api_key = secrets.token_urlsafe(32)
        logger.warning("No CREDITWISE_API_KEY set. Generated temporary key.")
        logger.warning("Set CREDITWISE_API_KEY environment variable for production!")
    else:
        logger.info("API key configured from environment")
    return api_key


VALID_API_KEY = get_api_key()


async def verify_api_key(api_key: Optional[str] = Depends(api_key_header)):
    """Verify API key for admin endpoints"""
    if api_key is None:
        logger.warning("Request without API key")
        raise HTTPException(
            status_code=401,
            detail="Missing API Key. Include 'X-API-Key' header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    if not secrets.compare_digest(api_key, VALID_API_KEY):
        logger.warning("Invalid API key attempt detected")
        raise HTTPException(
            status_code=401,
            detail="Invalid API Key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


# =============================================================================
# ERROR MAPPING
# =============================================================================

# Checked in order, subclasses first
ERROR_STATUS = (
    (TransitionInProgressError, 409),
    (SessionError, 404),
    (FlowError, 409),
    (ValidationError, 400),
    (ContentPolicyError, 422),
    (InsufficientCreditsError, 402),
    (AuthenticationError, 401),
    (ConfigurationError, 500),
    (GPTServiceError, 502),
    (OrchestratorError, 502),
    (StorageError, 503),
    (ServiceError, 503),
    (TransitionFailedError, 500),
)


def status_for(error: CreditWiseError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def error_body(error: CreditWiseError) -> Dict[str, str]:
    return {"error": error.message, "code": error.code}


@app.exception_handler(CreditWiseError)
async def creditwise_error_handler(request: Request, exc: CreditWiseError):
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=status, content=error_body(exc))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    code = "UNAUTHORIZED" if exc.status_code == 401 else "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail), "code": code},
        headers=getattr(exc, "headers", None)
    )


# =============================================================================
# RATE LIMITING
# =============================================================================

limiter = Limiter(key_func=get_real_ip)


def custom_rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Custom rate limit response with helpful message"""
    response = JSONResponse(
        content={"error": get_rate_limit_message("default"), "code": "RATE_LIMITED"},
        status_code=429,
    )
    response.headers["Retry-After"] = "60"
    response.headers["X-RateLimit-Limit"] = str(getattr(exc, "limit", "N/A"))
    return response


app.add_exception_handler(RateLimitExceeded, custom_rate_limit_handler)

# Required by slowapi
app.state.limiter = limiter

RATE_LIMITS = RATE_LIMIT_TIERS["default"]


# =============================================================================
# MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def log_requests(request, call_next):
    """Log all incoming requests except health checks"""
    path = request.url.path
    if path not in ("/", "/health"):
        logger.info(f"Request: {request.method} {path}")
    return await call_next(request)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """Add security headers to all responses"""
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

    if "Server" in response.headers:
        del response.headers["Server"]

    return response


allowed_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()] or [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Guest-Id"],
)


# =============================================================================
# API MODELS
# =============================================================================

class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitRequest(ApiModel):
    language: Optional[str] = None


class MessageRequest(ApiModel):
    session_id: str = Field(alias="sessionId")
    content: str
    language: Optional[str] = None


class ActionRequest(ApiModel):
    session_id: str = Field(alias="sessionId")
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    language: Optional[str] = None


class DocumentRequest(ApiModel):
    session_id: str = Field(alias="sessionId")
    name: str
    url: str
    language: Optional[str] = None


class GrantRequest(ApiModel):
    user_id: str = Field(alias="userId")
    amount: int


def session_payload(view: SessionView) -> Dict[str, Any]:
    return {
        "sessionId": view.session.id,
        "title": view.session.title,
        "state": view.state.value,
        "diagnosticData": view.diagnostic_data,
        "scenario": view.scenario.model_dump(mode="json") if view.scenario else None,
        "messages": [m.model_dump(mode="json") for m in view.messages],
        "profile": view.profile.model_dump(mode="json"),
        "mode": view.mode.value,
        "isGuest": view.is_guest,
        "guestId": view.guest_id,
        "credits": view.credits,
    }


def turn_payload(turn: TurnResult) -> Dict[str, Any]:
    return {
        "sessionId": turn.session_id,
        "state": turn.state.value,
        "messages": [m.model_dump(mode="json") for m in turn.messages],
        "mode": turn.mode.value,
        "refused": turn.refused,
        "credits": turn.credits,
    }


def with_guest_header(content: Dict[str, Any], identity: Identity) -> JSONResponse:
    """Hand a freshly issued guest id back to the client"""
    response = JSONResponse(content=content)
    if identity.is_guest:
        response.headers["X-Guest-Id"] = identity.user_id
    return response


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/", status_code=200)
def read_root():
    """Health check endpoint - responds immediately"""
    return {"status": "ok", "version": "1.0.0", "service": "creditwise"}


@app.get("/health", status_code=200)
def health():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/health/detail")
async def health_detail(service: ChatService = Depends(get_chat_service)):
    """Detailed health of the chat service and its backends"""
    try:
        return await service.health_check()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {"overall": "unhealthy", "error": str(e)}


# =============================================================================
# CHAT
# =============================================================================

@app.post("/chat/init")
@limiter.limit(RATE_LIMITS["chat_init"])
async def chat_init(
    request: Request,
    req: Optional[InitRequest] = None,
    identity: Identity = Depends(get_identity),
    x_guest_id: Optional[str] = Header(default=None),
    service: ChatService = Depends(get_chat_service)
):
    """
    Load (or create and greet) the caller's latest session.

    A signed-in caller that still sends a guest id ends that guest session;
    nothing is carried over.
    """
    if identity.durable and x_guest_id and is_valid_guest_id(x_guest_id):
        logger.info(f"User {identity.user_id} signed in, ending guest session {x_guest_id}")
        await service.end_guest_session(x_guest_id)

    view = await service.init_session(identity, language=req.language if req else None)
    return with_guest_header(session_payload(view), identity)


@app.post("/chat/sessions")
@limiter.limit(RATE_LIMITS["chat_init"])
async def chat_new_session(
    request: Request,
    req: Optional[InitRequest] = None,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    view = await service.start_new_session(identity, language=req.language if req else None)
    return with_guest_header(session_payload(view), identity)


@app.post("/chat/message")
@limiter.limit(RATE_LIMITS["chat_message"])
async def chat_message(
    request: Request,
    req: MessageRequest,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    turn = await service.send_message(identity, req.session_id, req.content, language=req.language)
    return turn_payload(turn)


@app.post("/chat/message/stream")
@limiter.limit(RATE_LIMITS["chat_message"])
async def chat_message_stream(
    request: Request,
    req: MessageRequest,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    """
    Same as /chat/message, streamed as NDJSON: ``token`` lines while the reply
    is generated, then one ``done`` (or ``error``) line. A client that goes
    away mid-stream leaves no assistant message behind.
    """
    content = service.check_message(req.content)

    queue: asyncio.Queue = asyncio.Queue()
    turn_task = asyncio.create_task(service.send_message(
        identity, req.session_id, content, language=req.language,
        on_token=lambda token: queue.put_nowait(token)
    ))

    async def stream():
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, turn_task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield json.dumps({"type": "token", "content": getter.result()}, ensure_ascii=False) + "\n"
                    continue

                getter.cancel()
                while not queue.empty():
                    yield json.dumps({"type": "token", "content": queue.get_nowait()}, ensure_ascii=False) + "\n"
                break

            try:
                turn = turn_task.result()
            except CreditWiseError as e:
                yield json.dumps({"type": "error", "status": status_for(e), **error_body(e)},
                                 ensure_ascii=False) + "\n"
            else:
                yield json.dumps({"type": "done", **turn_payload(turn)}, ensure_ascii=False) + "\n"
        finally:
            if not turn_task.done():
                logger.info(f"Stream for session {req.session_id[:8]} abandoned, cancelling turn")
                turn_task.cancel()

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@app.post("/chat/action")
@limiter.limit(RATE_LIMITS["chat_message"])
async def chat_action(
    request: Request,
    req: ActionRequest,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    turn = await service.send_action(identity, req.session_id, req.action, req.payload, language=req.language)
    return turn_payload(turn)


@app.post("/chat/documents")
@limiter.limit(RATE_LIMITS["chat_document"])
async def chat_document(
    request: Request,
    req: DocumentRequest,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    turn = await service.analyze_document(identity, req.session_id, req.name, req.url, language=req.language)
    return turn_payload(turn)


@app.delete("/chat/guest")
async def chat_end_guest(
    x_guest_id: Optional[str] = Header(default=None),
    service: ChatService = Depends(get_chat_service)
):
    """Drop the guest's ephemeral session (called on sign-in)"""
    if not is_valid_guest_id(x_guest_id):
        raise ValidationError("X-Guest-Id header is missing or malformed", field="X-Guest-Id")
    await service.end_guest_session(x_guest_id)
    return {"status": "ok"}


# =============================================================================
# CREDITS / PROFILE
# =============================================================================

@app.get("/credits")
@limiter.limit(RATE_LIMITS["credits"])
async def get_credits(
    request: Request,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    return await service.get_credits(identity)


@app.post("/credits/grant", dependencies=[Depends(verify_api_key)])
async def grant_credits(req: GrantRequest, service: ChatService = Depends(get_chat_service)):
    """Purchase flow hook: add credits to a user"""
    balance = await service.grant_credits(req.user_id, req.amount)
    return {"userId": req.user_id, "balance": balance}


@app.get("/profile")
async def get_profile(
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    return await service.get_profile(identity)


# =============================================================================
# DEBUG
# =============================================================================

@app.get("/debug/session/{session_id}", dependencies=[Depends(verify_api_key)])
async def debug_session(
    session_id: str,
    identity: Identity = Depends(get_identity),
    service: ChatService = Depends(get_chat_service)
):
    """State, snapshot and executor mode of one of the caller's sessions"""
    return await service.get_session_info(identity, session_id)


@app.get("/debug/flow", dependencies=[Depends(verify_api_key)])
async def debug_flow(service: ChatService = Depends(get_chat_service)):
    """Transition table and consistency check of the FSM"""
    summary = service.flow_engine.get_flow_summary()
    summary["issues"] = service.flow_engine.validate_fsm()
    summary["prompts"] = len(service.prompt_manager.prompts)
    return summary


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info(f"Starting CreditWise API on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
