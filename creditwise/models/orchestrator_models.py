# creditwise/models/orchestrator_models.py
"""
Wire contract between the chat API, the edge proxy and the remote orchestrator.

Field names follow the JSON contract (camelCase on the wire); Python code uses
snake_case through aliases.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from creditwise.models.conversation import ConversationState, UIComponent


class ProxyEndpoint(str, Enum):
    HEALTH = "health"
    START = "start"
    MESSAGE = "message"
    ACTION = "action"
    SESSION = "session"


class ContractModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrchestratorEvent(ContractModel):
    type: str
    data: Optional[Dict[str, Any]] = None


class ResponseMeta(ContractModel):
    diagnostic_data: Optional[Dict[str, Any]] = Field(default=None, alias="diagnosticData")
    profile_data: Optional[Dict[str, Any]] = Field(default=None, alias="profileData")
    event: Optional[OrchestratorEvent] = None


class OrchestratorResponse(ContractModel):
    text: str = ""
    state: ConversationState
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    ui: Optional[List[UIComponent]] = None
    meta: Optional[ResponseMeta] = None
    streaming: bool = False
    fallback: bool = False


class HealthResponse(ContractModel):
    status: str
    mode: str
    timestamp: Optional[str] = None
    auth_required: bool = Field(default=False, alias="authRequired")


class ErrorResponse(ContractModel):
    error: str
    code: str


# ---------------------------------------------------------------------------
# Validated remote results
# ---------------------------------------------------------------------------

@dataclass
class RemoteOk:
    response: OrchestratorResponse


@dataclass
class NeedsSessionCorrection:
    """The remote returned a placeholder instead of a real session id"""
    response: OrchestratorResponse
    reported_session_id: Optional[str]

    def corrected(self, session_id: str) -> OrchestratorResponse:
        return self.response.model_copy(update={"session_id": session_id})


@dataclass
class FallbackRequested:
    reason: str
    response: Optional[OrchestratorResponse] = None


RemoteResult = Union[RemoteOk, NeedsSessionCorrection, FallbackRequested]


SENTINEL_SESSION_IDS = frozenset({"", "unknown", "undefined", "null", "none"})


def is_sentinel_session_id(session_id: Optional[str]) -> bool:
    """True for missing ids and unrendered workflow templates such as ``{{ $json.sessionId }}``"""
    if session_id is None:
        return True
    value = session_id.strip()
    return value.lower() in SENTINEL_SESSION_IDS or "{{" in value
