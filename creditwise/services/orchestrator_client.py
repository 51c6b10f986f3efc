# creditwise/services/orchestrator_client.py
"""
Remote orchestrator client.

Talks to the edge proxy (``POST {CHAT_PROXY_URL}`` with ``{endpoint, ...}``)
on behalf of the caller, forwarding the caller's bearer token. Successful
responses are validated and classified into a tagged RemoteResult; anything
else raises OrchestratorError so the executor can demote.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from creditwise.core.config import settings
from creditwise.core.exceptions import ConfigurationError, OrchestratorError
from creditwise.core.service_base import BaseService
from creditwise.models.orchestrator_models import (
    FallbackRequested,
    HealthResponse,
    NeedsSessionCorrection,
    OrchestratorResponse,
    ProxyEndpoint,
    RemoteOk,
    RemoteResult,
    is_sentinel_session_id,
)

logger = logging.getLogger(__name__)


@dataclass
class OrchestratorConfig:
    url: Optional[str] = None
    timeout: float = 30.0
    health_timeout: float = 3.0
    transport: Optional[httpx.AsyncBaseTransport] = None


class OrchestratorClient(BaseService[OrchestratorConfig]):
    """HTTP client for the chat proxy contract"""

    def __init__(self, config: Optional[OrchestratorConfig] = None):
        if config is None:
            config = OrchestratorConfig(
                url=settings.CHAT_PROXY_URL,
                timeout=settings.ORCHESTRATOR_TIMEOUT,
                health_timeout=settings.HEALTH_PROBE_TIMEOUT
            )
        super().__init__(config, logger)

    @property
    def configured(self) -> bool:
        return bool(self.config.url)

    def _validate_config(self) -> None:
        super()._validate_config()
        if not self.config.url:
            raise ConfigurationError("CHAT_PROXY_URL is not set", component="OrchestratorClient")

    async def _initialize_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self.config.transport)

    async def _cleanup(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(
        self,
        endpoint: ProxyEndpoint,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None
    ) -> Dict[str, Any]:
        await self.ensure_initialized()

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        body = {"endpoint": endpoint.value, **(data or {})}
        try:
            response = await self.client.post(
                self.config.url,
                json=body,
                headers=headers,
                timeout=timeout or self.config.timeout
            )
        except httpx.TimeoutException as e:
            self._record_call(failed=True)
            raise OrchestratorError(f"Orchestrator {endpoint.value} timed out", code="TIMEOUT") from e
        except httpx.HTTPError as e:
            self._record_call(failed=True)
            raise OrchestratorError(f"Orchestrator {endpoint.value} failed: {e}", code="NETWORK_ERROR") from e

        if response.status_code >= 400:
            self._record_call(failed=True)
            error, code = self._parse_error(response)
            logger.warning(f"Orchestrator {endpoint.value} returned {response.status_code} {code}: {error}")
            raise OrchestratorError(error, code=code, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            self._record_call(failed=True)
            raise OrchestratorError("Orchestrator returned invalid JSON", code="INVALID_RESPONSE") from e

        if not isinstance(payload, dict):
            self._record_call(failed=True)
            raise OrchestratorError("Orchestrator returned a non-object body", code="INVALID_RESPONSE")

        self._record_call()
        return payload

    @staticmethod
    def _parse_error(response: httpx.Response):
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}", "UNKNOWN_ERROR"
        if not isinstance(data, dict):
            return f"HTTP {response.status_code}", "UNKNOWN_ERROR"
        return str(data.get("error") or f"HTTP {response.status_code}"), str(data.get("code") or "UNKNOWN_ERROR")

    @staticmethod
    def classify(payload: Dict[str, Any]) -> RemoteResult:
        """
        Validate a 2xx body into a tagged result.

        Raises:
            OrchestratorError: If the body does not match the response contract
        """
        if payload.get("fallback"):
            try:
                response = OrchestratorResponse.model_validate(payload)
            except PydanticValidationError:
                response = None
            return FallbackRequested(reason="fallback_mode", response=response)

        try:
            response = OrchestratorResponse.model_validate(payload)
        except PydanticValidationError as e:
            raise OrchestratorError(
                "Orchestrator response does not match the contract",
                code="INVALID_RESPONSE",
                details={"errors": e.errors(include_url=False)[:3]}
            ) from e

        if is_sentinel_session_id(response.session_id):
            return NeedsSessionCorrection(response=response, reported_session_id=response.session_id)

        return RemoteOk(response=response)

    # ------------------------------------------------------------------
    # Contract operations
    # ------------------------------------------------------------------

    async def health(self) -> HealthResponse:
        """
        Probe the proxy with the short health timeout.

        Raises:
            OrchestratorError: On transport failure or a malformed body
        """
        payload = await self._post(ProxyEndpoint.HEALTH, timeout=self.config.health_timeout)
        try:
            return HealthResponse.model_validate(payload)
        except PydanticValidationError as e:
            raise OrchestratorError("Malformed health response", code="INVALID_RESPONSE") from e

    async def start(self, token: Optional[str] = None, language: str = "ru") -> RemoteResult:
        return self.classify(await self._post(ProxyEndpoint.START, {"language": language}, token))

    async def send_message(
        self,
        session_id: str,
        content: str,
        token: Optional[str] = None,
        language: str = "ru",
        attachments: Optional[List[Dict[str, Any]]] = None
    ) -> RemoteResult:
        data: Dict[str, Any] = {"sessionId": session_id, "content": content, "language": language}
        if attachments:
            data["attachments"] = attachments
        return self.classify(await self._post(ProxyEndpoint.MESSAGE, data, token))

    async def send_action(
        self,
        session_id: str,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
        language: str = "ru"
    ) -> RemoteResult:
        data = {"sessionId": session_id, "action": action, "language": language, "payload": payload or {}}
        return self.classify(await self._post(ProxyEndpoint.ACTION, data, token))

    async def get_session(self, session_id: str, token: Optional[str] = None) -> Optional[OrchestratorResponse]:
        """Remote view of a session, None if it cannot be fetched"""
        try:
            result = self.classify(await self._post(ProxyEndpoint.SESSION, {"sessionId": session_id}, token))
        except OrchestratorError as e:
            logger.info(f"Remote session {session_id[:8]} unavailable: {e.message}")
            return None

        if isinstance(result, FallbackRequested):
            return None
        if isinstance(result, NeedsSessionCorrection):
            return result.corrected(session_id)
        return result.response

    async def health_check(self) -> Dict[str, Any]:
        if not self.configured:
            return {"healthy": False, "status": "not_configured"}
        try:
            health = await self.health()
            return {"healthy": health.status == "ok", "status": health.status, "mode": health.mode}
        except (OrchestratorError, ConfigurationError) as e:
            return {"healthy": False, "status": "error", "error": str(e)}
