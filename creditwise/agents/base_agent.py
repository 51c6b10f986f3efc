# creditwise/agents/base_agent.py
"""
Base Agent - message formatting only.

Key principles:
- No business logic (handled by flow handlers and services)
- All fixed text comes from the PromptManager
- Async-only methods
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from enum import Enum

from creditwise.core.prompt_manager import PromptManager, PromptType, get_prompt_manager
from creditwise.core.exceptions import ValidationError
from creditwise.models.conversation import UIComponent, UIComponentType
from creditwise.services.gpt_service import GPTService

LANGUAGE_NAMES = {
    "ru": "Russian",
    "en": "English",
}


@dataclass
class AgentMessage:
    """Formatted assistant output plus its rendering hints"""
    text: str
    message_type: str = "response"
    ui: List[UIComponent] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


class MessageType(str, Enum):
    """Scripted messages an agent can format"""
    GREETING = "greeting"
    CONSENT_REQUEST = "consent_request"
    CONSENT_REPROMPT = "consent_reprompt"
    JURISDICTION_QUESTION = "jurisdiction_question"
    DIAGNOSTIC_QUESTION = "diagnostic_question"
    SCENARIO_LIST = "scenario_list"
    SCENARIO_QUESTION = "scenario_question"
    POLICY_REFUSAL = "policy_refusal"
    RESPONSE = "response"


@dataclass
class AgentContext:
    """Context passed to agents for message formatting"""
    session_id: str
    user_input: str = ""
    message_type: MessageType = MessageType.RESPONSE
    language: str = "ru"
    metadata: Dict[str, Any] = field(default_factory=dict)


class BaseAgent(ABC):
    """
    Base class for agents.

    Agents are responsible for:
    1. Message formatting and structure
    2. Prompt selection and parameter filling
    3. Rendering hints (option chips, progress)
    """

    def __init__(
        self,
        name: str,
        role: str,
        prompt_manager: Optional[PromptManager] = None,
        gpt_service: Optional[GPTService] = None
    ):
        self.name = name
        self.role = role
        self.prompt_manager = prompt_manager or get_prompt_manager()
        self.gpt_service = gpt_service

    @abstractmethod
    async def respond(self, context: AgentContext) -> AgentMessage:
        """
        Format the scripted message requested by ``context.message_type``.

        Raises:
            ValidationError: If context is invalid
        """

    async def health_check(self) -> Dict[str, Any]:
        status = {
            "agent": self.name,
            "role": self.role,
            "healthy": True,
            "services": {}
        }

        try:
            self.prompt_manager.get_localized(PromptType.GREETING, "ru")
            status["services"]["prompt_manager"] = "healthy"
        except Exception as e:
            status["services"]["prompt_manager"] = f"error: {str(e)}"
            status["healthy"] = False

        if self.gpt_service:
            try:
                gpt_status = await self.gpt_service.health_check()
                status["services"]["gpt_service"] = "healthy" if gpt_status.get("healthy", False) else "unhealthy"
            except Exception as e:
                status["services"]["gpt_service"] = f"error: {str(e)}"

        return status

    def text(self, prompt_type: PromptType, language: str, **kwargs) -> str:
        """Localized fixed text"""
        return self.prompt_manager.get_localized(prompt_type, language, **kwargs)

    def create_message(
        self,
        text: str,
        message_type: MessageType = MessageType.RESPONSE,
        ui: Optional[List[UIComponent]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> AgentMessage:
        return AgentMessage(
            text=text.strip(),
            message_type=message_type.value,
            ui=ui or [],
            metadata=metadata or {}
        )

    @staticmethod
    def options(options: List[str]) -> UIComponent:
        return UIComponent(type=UIComponentType.OPTIONS, options=list(options))

    @staticmethod
    def progress(done: int, total: int) -> UIComponent:
        return UIComponent(type=UIComponentType.PROGRESS, progress=round(done * 100 / total))

    @staticmethod
    def language_name(language: str) -> str:
        return LANGUAGE_NAMES.get(language, LANGUAGE_NAMES["ru"])

    def validate_context(self, context: AgentContext) -> None:
        if not isinstance(context, AgentContext):
            raise ValidationError("Context must be an AgentContext instance")

        if not context.session_id:
            raise ValidationError("Context must have a session_id", field="session_id")

        if not isinstance(context.message_type, MessageType):
            raise ValidationError("Context must have a valid message_type", field="message_type")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', role='{self.role}')"
