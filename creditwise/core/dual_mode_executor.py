# creditwise/core/dual_mode_executor.py
"""
Dual-Mode Executor.

Each conversation session owns one executor. It starts in CHECKING, probes
the proxy health endpoint once, and settles on REMOTE or LOCAL. In REMOTE
mode every dispatch tries the orchestrator first; any failure demotes the
executor to LOCAL for the rest of the session and the same request is
re-run locally. There is no way back from LOCAL.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from creditwise.core.local_interpreter import ConversationRequest, LocalInterpreter
from creditwise.models.conversation import ConversationState, TransitionResult
from creditwise.models.orchestrator_models import (
    FallbackRequested,
    NeedsSessionCorrection,
    OrchestratorResponse,
    RemoteResult,
)
from creditwise.services.orchestrator_client import OrchestratorClient

logger = logging.getLogger(__name__)

REMOTE_HEALTH_MODE = "n8n"

# Remote profile fields -> Profile attributes
PROFILE_FIELD_MAP = {
    "jurisdiction": "jurisdiction",
    "hasConsent": "has_consent",
    "has_consent": "has_consent",
    "financialData": "financial_data",
    "financial_data": "financial_data",
    "displayName": "display_name",
    "display_name": "display_name",
}


class ExecutionMode(str, Enum):
    CHECKING = "checking"
    REMOTE = "remote"
    LOCAL = "local"


class RemoteStrategy:
    """Runs a request against the orchestrator and normalizes the answer"""

    def __init__(self, client: OrchestratorClient):
        self.client = client

    async def probe(self) -> bool:
        health = await self.client.health()
        return health.status == "ok" and health.mode == REMOTE_HEALTH_MODE

    async def start(self, request: ConversationRequest) -> TransitionResult:
        result = await self.client.start(token=request.token, language=request.language)
        return self._normalize(result, request)

    async def dispatch(self, request: ConversationRequest) -> TransitionResult:
        if request.is_action:
            result = await self.client.send_action(
                request.session_id,
                request.action,
                payload=request.payload,
                token=request.token,
                language=request.language
            )
        else:
            result = await self.client.send_message(
                request.session_id,
                request.content or "",
                token=request.token,
                language=request.language
            )
        return self._normalize(result, request)

    def _normalize(self, result: RemoteResult, request: ConversationRequest) -> TransitionResult:
        if isinstance(result, FallbackRequested):
            raise _Fallback(result.reason)

        if isinstance(result, NeedsSessionCorrection):
            logger.info(
                f"Remote reported session id {result.reported_session_id!r}, "
                f"using local id {request.session_id[:8]}"
            )
            response = result.corrected(request.session_id)
        else:
            response = result.response
            if response.session_id != request.session_id:
                logger.debug(f"Remote session id {response.session_id} differs from local {request.session_id[:8]}")

        return to_transition_result(response, request)


class _Fallback(Exception):
    """Remote explicitly asked the caller to run locally"""


def profile_updates_from_remote(profile_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    updates = {}
    for key, value in (profile_data or {}).items():
        attr = PROFILE_FIELD_MAP.get(key)
        if attr is not None:
            updates[attr] = value
    return updates


def to_transition_result(response: OrchestratorResponse, request: ConversationRequest) -> TransitionResult:
    """Map the remote response onto the local result shape"""
    meta = response.meta
    patch: Dict[str, str] = {}
    profile_updates: Dict[str, Any] = {}
    event = None
    if meta is not None:
        if meta.diagnostic_data:
            patch = {
                key: str(value) for key, value in meta.diagnostic_data.items()
                if request.diagnostic_data.get(key) != str(value)
            }
        profile_updates = profile_updates_from_remote(meta.profile_data)
        event = meta.event.type if meta.event else None

    return TransitionResult(
        next_state=response.state,
        assistant_text=response.text,
        diagnostic_data_patch=patch,
        profile_updates=profile_updates,
        ui=response.ui or [],
        clear_scenario=response.state != ConversationState.SCENARIO_RUN,
        event=event
    )


class DualModeExecutor:
    """
    Per-session router between the remote orchestrator and the local
    interpreter.
    """

    def __init__(
        self,
        local: LocalInterpreter,
        remote_client: Optional[OrchestratorClient] = None
    ):
        self.local = local
        self.remote = RemoteStrategy(remote_client) if remote_client is not None else None
        self.mode = ExecutionMode.CHECKING
        self.demotion_reason: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.mode == ExecutionMode.REMOTE

    async def initialize(self) -> ExecutionMode:
        """Probe once; later calls return the settled mode"""
        if self.mode != ExecutionMode.CHECKING:
            return self.mode

        mode = ExecutionMode.LOCAL
        if self.remote is not None and self.remote.client.configured:
            try:
                if await self.remote.probe():
                    mode = ExecutionMode.REMOTE
            except Exception as e:
                logger.info(f"Health probe failed, running locally: {e}")

        if self.mode == ExecutionMode.CHECKING:
            self.mode = mode
            logger.info(f"Executor mode: {self.mode.value}")
        return self.mode

    def demote(self, reason: str) -> None:
        if self.mode == ExecutionMode.LOCAL:
            return
        logger.warning(f"Demoting executor to local mode: {reason}")
        self.mode = ExecutionMode.LOCAL
        self.demotion_reason = reason

    async def start(self, request: ConversationRequest) -> TransitionResult:
        await self.initialize()
        if self.is_remote:
            try:
                return await self.remote.start(request)
            except Exception as e:
                self.demote(self._reason(e))
        return await self.local.start(request)

    async def dispatch(self, request: ConversationRequest) -> TransitionResult:
        """
        Run one turn. Remote first when in REMOTE mode, local otherwise or
        after a demotion. Local errors propagate unchanged.
        """
        await self.initialize()
        if self.is_remote:
            try:
                result = await self.remote.dispatch(request)
            except Exception as e:
                self.demote(self._reason(e))
            else:
                if request.on_token is not None and result.assistant_text:
                    request.on_token(result.assistant_text)
                return result

        return await self.local.handle(request)

    @staticmethod
    def _reason(error: Exception) -> str:
        if isinstance(error, _Fallback):
            return f"fallback requested ({error})"
        return f"{type(error).__name__}: {error}"

    async def fetch_remote_snapshot(self, session_id: str, token: Optional[str] = None) -> Optional[OrchestratorResponse]:
        """Remote view of the session when in REMOTE mode, else None"""
        if not self.is_remote:
            return None
        try:
            return await self.remote.client.get_session(session_id, token=token)
        except Exception as e:
            logger.info(f"Remote snapshot fetch failed for {session_id[:8]}: {e}")
            return None
