# creditwise/models/conversation.py

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from creditwise.prompts.diagnostic_prompts import TOTAL_STEPS


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationState(str, Enum):
    INTRO = "INTRO"
    CONSENT = "CONSENT"
    JURISDICTION = "JURISDICTION"
    DIAGNOSTIC_1 = "DIAGNOSTIC_1"
    DIAGNOSTIC_2 = "DIAGNOSTIC_2"
    DIAGNOSTIC_3 = "DIAGNOSTIC_3"
    DIAGNOSTIC_4 = "DIAGNOSTIC_4"
    DIAGNOSTIC_5 = "DIAGNOSTIC_5"
    DIAGNOSTIC_6 = "DIAGNOSTIC_6"
    DIAGNOSTIC_7 = "DIAGNOSTIC_7"
    SUMMARY = "SUMMARY"
    SCENARIOS = "SCENARIOS"
    SCENARIO_RUN = "SCENARIO_RUN"
    CHAT = "CHAT"

    @classmethod
    def diagnostic(cls, step: int) -> "ConversationState":
        return cls(f"DIAGNOSTIC_{step}")

    @property
    def diagnostic_step(self) -> Optional[int]:
        """1..7 for diagnostic states, None otherwise"""
        if self.value.startswith("DIAGNOSTIC_"):
            return int(self.value.rsplit("_", 1)[1])
        return None

    @property
    def is_diagnostic(self) -> bool:
        return self.diagnostic_step is not None

    @property
    def is_free_chat(self) -> bool:
        return self in FREE_CHAT_STATES

    def next_diagnostic(self) -> "ConversationState":
        """DIAGNOSTIC_n -> DIAGNOSTIC_{n+1}, DIAGNOSTIC_7 -> SUMMARY"""
        step = self.diagnostic_step
        if step is None:
            raise ValueError(f"{self.value} is not a diagnostic state")
        if step >= TOTAL_STEPS:
            return ConversationState.SUMMARY
        return ConversationState.diagnostic(step + 1)


FREE_CHAT_STATES = frozenset({
    ConversationState.SUMMARY,
    ConversationState.SCENARIOS,
    ConversationState.SCENARIO_RUN,
    ConversationState.CHAT,
})


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class UIComponentType(str, Enum):
    TEXT = "text"
    OPTIONS = "options"
    INPUT = "input"
    PROGRESS = "progress"
    SUMMARY = "summary"
    SCENARIO_CARD = "scenario_card"
    DOCUMENT_UPLOAD = "document_upload"


class UIComponent(BaseModel):
    """Rendering hint attached to an assistant message"""
    type: UIComponentType
    text: Optional[str] = None
    options: Optional[List[str]] = None
    progress: Optional[int] = None
    data: Optional[Dict[str, Any]] = None


class MessageMetadata(BaseModel):
    state: ConversationState
    diagnostic_data: Dict[str, str] = Field(default_factory=dict)
    ui: List[UIComponent] = Field(default_factory=list)
    event: Optional[str] = None


class Message(BaseModel):
    """A persisted transcript entry. Never modified after append."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    metadata: MessageMetadata

    def to_llm(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    title: str = "Initial Consultation"
    created_at: datetime = Field(default_factory=utcnow)


class ScenarioRun(BaseModel):
    """Progress of a scenario wizard while in SCENARIO_RUN"""
    scenario_id: str
    step_index: int = 0
    answers: Dict[str, str] = Field(default_factory=dict)


class SessionSnapshot(BaseModel):
    """
    Conversation state persisted beside the transcript, one per session.

    Restored as a unit when a session is loaded.
    """
    session_id: str
    state: ConversationState = ConversationState.INTRO
    diagnostic_data: Dict[str, str] = Field(default_factory=dict)
    scenario: Optional[ScenarioRun] = None
    updated_at: datetime = Field(default_factory=utcnow)


class Profile(BaseModel):
    user_id: str
    display_name: str = "Guest"
    jurisdiction: Optional[str] = None
    has_consent: bool = False
    financial_data: Optional[Dict[str, str]] = None
    created_at: datetime = Field(default_factory=utcnow)


class DocumentRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str
    url: str
    document_type: Optional[str] = None
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class TransitionResult(BaseModel):
    """
    Outcome of one FSM step.

    ``diagnostic_data_patch`` and ``profile_updates`` are deltas; the caller
    merges them into its persisted state.
    """
    next_state: ConversationState
    assistant_text: str
    diagnostic_data_patch: Dict[str, str] = Field(default_factory=dict)
    profile_updates: Dict[str, Any] = Field(default_factory=dict)
    ui: List[UIComponent] = Field(default_factory=list)
    scenario: Optional[ScenarioRun] = None
    clear_scenario: bool = False
    event: Optional[str] = None
    refused: bool = False
