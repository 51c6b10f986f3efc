# creditwise/core/local_interpreter.py
"""
Local Interpreter - runs the advisor FSM in-process.

Used when the remote orchestrator is unavailable, and always for document
analysis. Inputs arrive as a ConversationRequest; output is the same
TransitionResult the remote path is normalized into.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

from creditwise.core.flow_engine import FlowEngine, FlowEvent, create_flow_engine
from creditwise.core.flow_handlers import DocumentAnalysis, FlowContext, TokenCallback
from creditwise.models.conversation import (
    ConversationState,
    Message,
    Profile,
    ScenarioRun,
    TransitionResult,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversationRequest:
    """Everything one turn needs, loaded by the chat service"""
    session_id: str
    state: ConversationState
    profile: Profile
    diagnostic_data: Dict[str, str] = field(default_factory=dict)
    language: str = "ru"
    history: Sequence[Message] = ()
    scenario: Optional[ScenarioRun] = None
    content: Optional[str] = None
    action: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    on_token: Optional[TokenCallback] = None
    token: Optional[str] = None

    @property
    def is_action(self) -> bool:
        return self.action is not None

    def flow_context(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "language": self.language,
            "history": self.history,
            "scenario": self.scenario,
            "on_token": self.on_token,
        }


class LocalInterpreter:
    """In-process executor of the conversation"""

    def __init__(self, flow_engine: Optional[FlowEngine] = None):
        self.flow_engine = flow_engine or create_flow_engine()

    async def start(self, request: ConversationRequest) -> TransitionResult:
        """Greeting for a fresh session"""
        return await self.flow_engine.apply_action(
            ConversationState.INTRO,
            {},
            FlowEvent.START_SESSION.value,
            None,
            request.profile,
            request.flow_context()
        )

    async def handle(self, request: ConversationRequest) -> TransitionResult:
        """Run one typed message or action through the FSM"""
        if request.is_action:
            logger.debug(f"Local action {request.action} in {request.state.value}")
            return await self.flow_engine.apply_action(
                request.state,
                request.diagnostic_data,
                request.action,
                request.payload,
                request.profile,
                request.flow_context()
            )

        logger.debug(f"Local message in {request.state.value}")
        return await self.flow_engine.transition(
            request.state,
            request.diagnostic_data,
            request.content or "",
            request.profile,
            request.flow_context()
        )

    async def analyze_document(self, request: ConversationRequest, name: str, url: str) -> DocumentAnalysis:
        ctx = FlowContext(
            session_id=request.session_id,
            state=request.state,
            diagnostic_data=dict(request.diagnostic_data),
            profile=request.profile,
            language=request.language
        )
        return await self.flow_engine.handlers.analyze_document(ctx, request.profile.user_id, name, url)
