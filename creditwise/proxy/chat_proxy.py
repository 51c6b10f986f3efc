# creditwise/proxy/chat_proxy.py
"""
Edge proxy in front of the n8n workflow.

Hides the webhook URL and secret from clients. A single route,
``POST /chat-proxy``, takes ``{endpoint, ...}`` and forwards it to
``{N8N_WEBHOOK_URL}/{endpoint}``. Without a configured webhook every
conversational endpoint answers with ``fallback: true`` so callers switch to
their local interpreter.

Run with: uvicorn creditwise.proxy.chat_proxy:app
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from creditwise.core.config import Settings, settings as default_settings
from creditwise.core.exceptions import AuthenticationError, ConfigurationError, ServiceError
from creditwise.core.logging_config import setup_logging
from creditwise.core.rate_limit_config import RATE_LIMIT_TIERS, create_custom_key_func
from creditwise.core.security.identity import TokenVerifier
from creditwise.models.orchestrator_models import ErrorResponse, ProxyEndpoint

logger = logging.getLogger(__name__)
funnel_logger = logging.getLogger("creditwise.funnel")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "authorization, content-type",
}

# Action -> funnel event
ACTION_EVENTS = {
    "consent_given": "consent_given",
    "jurisdiction_set": "jurisdiction_set",
    "diagnostic_answer": "diagnostic_step",
    "scenario_select": "scenario_started",
    "scenario_step": "scenario_step",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_response(data: Dict[str, Any], status: int = 200) -> JSONResponse:
    return JSONResponse(content=data, status_code=status, headers=CORS_HEADERS)


def error_response(error: str, code: str, status: int = 400) -> JSONResponse:
    return json_response(ErrorResponse(error=error, code=code).model_dump(), status)


# =============================================================================
# N8N CLIENT
# =============================================================================

@dataclass
class N8nConfig:
    webhook_url: Optional[str] = None
    secret: str = ""
    timeout: float = 30.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)


class N8nClient:
    """Posts proxied requests to the workflow webhooks"""

    def __init__(self, config: N8nConfig):
        self.config = config

    async def call(self, endpoint: str, data: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        """
        Forward one request.

        Raises:
            ServiceError: On transport failure or a non-2xx answer
        """
        url = f"{self.config.webhook_url.rstrip('/')}/{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Secret": self.config.secret,
            "X-User-Id": user_id,
        }
        body = {**data, "userId": user_id, "timestamp": utc_timestamp()}

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout, transport=self.config.transport) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise ServiceError(f"n8n unreachable: {e}", service_name="n8n", operation=endpoint)

        if response.status_code >= 400:
            raise ServiceError(
                f"n8n error: {response.status_code} - {response.text}",
                service_name="n8n",
                operation=endpoint
            )

        try:
            return response.json()
        except ValueError:
            raise ServiceError("n8n returned invalid JSON", service_name="n8n", operation=endpoint)


def log_event(user_id: str, event_type: str, event_data: Dict[str, Any]) -> None:
    """Funnel analytics through the standard logger; never raises"""
    try:
        funnel_logger.info(f"[Event] {event_type}: user={user_id} {event_data}")
    except Exception as e:
        logger.error(f"[Event logging error]: {e}")


# =============================================================================
# APP
# =============================================================================

def create_proxy_app(
    config: Optional[Settings] = None,
    n8n_client: Optional[N8nClient] = None,
    verifier: Optional[TokenVerifier] = None
) -> FastAPI:
    """Build the proxy app; tests inject settings, the n8n client and the verifier"""
    cfg = config or default_settings
    n8n = n8n_client or N8nClient(N8nConfig(
        webhook_url=cfg.N8N_WEBHOOK_URL,
        secret=cfg.N8N_WEBHOOK_SECRET,
        timeout=cfg.N8N_TIMEOUT
    ))
    token_verifier = verifier or TokenVerifier(cfg.AUTH_JWT_SECRET, cfg.AUTH_JWT_ALGORITHM)

    app = FastAPI(title="CreditWise Chat Proxy", version="1.0.0", docs_url=None, redoc_url=None)
    limiter = Limiter(key_func=create_custom_key_func("proxy"))
    app.state.limiter = limiter

    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        response = error_response("Too many requests", "RATE_LIMITED", 429)
        response.headers["Retry-After"] = "60"
        return response

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    def resolve_user(request: Request) -> str:
        """
        User id from the bearer token, or the shared guest id.

        Raises:
            AuthenticationError: Invalid token, or guests not allowed
            ConfigurationError: Token sent but no secret configured
        """
        auth_header = request.headers.get("Authorization")
        if auth_header:
            token = auth_header[7:] if auth_header.lower().startswith("bearer ") else auth_header
            return token_verifier.verify(token.strip()).user_id

        if not cfg.PROXY_ALLOW_GUESTS:
            raise AuthenticationError("Authentication required", error_type="missing_token")
        return cfg.GUEST_USER_ID

    async def route(endpoint: str, data: Dict[str, Any], user_id: str) -> JSONResponse:
        if endpoint == ProxyEndpoint.START.value:
            result = await n8n.call("start", {"language": data.get("language") or "ru"}, user_id)
            log_event(user_id, "chat_started", {"sessionId": result.get("sessionId"),
                                                "language": data.get("language")})
            return json_response(result)

        if endpoint == ProxyEndpoint.MESSAGE.value:
            if not data.get("sessionId") or not data.get("content"):
                return error_response("Missing sessionId or content", "INVALID_REQUEST")
            result = await n8n.call("message", {
                "sessionId": data["sessionId"],
                "content": data["content"],
                "language": data.get("language") or "ru",
                "attachments": data.get("attachments"),
            }, user_id)
            log_event(user_id, "ai_call", {"sessionId": data["sessionId"], "state": result.get("state")})
            return json_response(result)

        if endpoint == ProxyEndpoint.ACTION.value:
            if not data.get("sessionId") or not data.get("action"):
                return error_response("Missing sessionId or action", "INVALID_REQUEST")
            result = await n8n.call("action", {
                "sessionId": data["sessionId"],
                "action": data["action"],
                "language": data.get("language") or "ru",
                "payload": data.get("payload"),
            }, user_id)

            event_type = ACTION_EVENTS.get(data["action"])
            if event_type:
                log_event(user_id, event_type, {"sessionId": data["sessionId"], "action": data["action"],
                                                "payload": data.get("payload")})
            if result.get("state") == "SUMMARY":
                log_event(user_id, "diagnostic_completed", {"sessionId": data["sessionId"]})
            return json_response(result)

        if endpoint == ProxyEndpoint.SESSION.value:
            if not data.get("sessionId"):
                return error_response("Missing sessionId", "INVALID_REQUEST")
            result = await n8n.call("session", {"sessionId": data["sessionId"]}, user_id)
            return json_response(result)

        return error_response(f"Unknown endpoint: {endpoint}", "UNKNOWN_ENDPOINT")

    @app.api_route("/chat-proxy", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
    @limiter.limit(RATE_LIMIT_TIERS["default"]["proxy"])
    async def chat_proxy(request: Request):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        if request.method not in ("POST", "GET"):
            return error_response("Method not allowed", "METHOD_NOT_ALLOWED", 405)

        try:
            body: Dict[str, Any] = {}
            if request.method == "POST":
                try:
                    parsed = await request.json()
                    body = parsed if isinstance(parsed, dict) else {}
                except ValueError:
                    body = {}

            data = dict(body)
            endpoint = data.pop("endpoint", None) or request.query_params.get("endpoint")
            if not endpoint:
                return error_response("Missing endpoint", "MISSING_ENDPOINT")

            if endpoint == ProxyEndpoint.HEALTH.value:
                return json_response({
                    "status": "ok",
                    "mode": "n8n" if n8n.config.configured else "fallback",
                    "timestamp": utc_timestamp(),
                    "authRequired": False,
                })

            try:
                user_id = resolve_user(request)
            except AuthenticationError:
                return error_response("Unauthorized", "UNAUTHORIZED", 401)
            except ConfigurationError as e:
                logger.error(f"[chat-proxy] {e.message}")
                return error_response("Server misconfigured", "CONFIG_ERROR", 500)

            if not n8n.config.configured:
                logger.info(f"[chat-proxy] Fallback mode for endpoint: {endpoint}")
                now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
                return json_response({
                    "text": "",
                    "state": "INTRO",
                    "sessionId": data.get("sessionId") or f"fallback_{now_ms}",
                    "fallback": True,
                    "meta": {"event": {"type": "fallback_mode"}},
                })

            return await route(endpoint, data, user_id)

        except Exception as e:
            logger.error(f"[chat-proxy] Error: {e}", exc_info=True)
            message = e.message if isinstance(e, ServiceError) else (str(e) or "Internal error")
            return error_response(message, "INTERNAL_ERROR", 500)

    return app


setup_logging("creditwise-proxy")
app = create_proxy_app()
