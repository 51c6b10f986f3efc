# creditwise/core/flow_handlers.py
"""
Flow Handlers - business logic behind each FSM transition.

The FlowEngine decides which transition applies; the handler for that
transition builds the TransitionResult: assistant text, rendering hints,
diagnostic/profile deltas and the funnel event. Handlers never persist
anything and never mutate the context they receive.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Sequence

from creditwise.agents.advisor_agent import AdvisorAgent
from creditwise.agents.base_agent import AgentContext, MessageType
from creditwise.core.config import settings
from creditwise.core.exceptions import (
    ConfigurationError,
    FlowError,
    PromptError,
    ServiceError,
    ValidationError,
)
from creditwise.core.prompt_manager import PromptManager, PromptType, get_prompt_manager
from creditwise.models.conversation import (
    ConversationState,
    DocumentRecord,
    Message,
    Profile,
    ScenarioRun,
    TransitionResult,
    UIComponent,
    UIComponentType,
)
from creditwise.prompts import scenario_prompts
from creditwise.services.gpt_service import GPTService
from creditwise.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


@dataclass
class FlowContext:
    """Read-only inputs of one transition"""
    session_id: str
    state: ConversationState
    diagnostic_data: Dict[str, str] = field(default_factory=dict)
    profile: Optional[Profile] = None
    language: str = "ru"
    history: Sequence[Message] = ()
    scenario: Optional[ScenarioRun] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    on_token: Optional[TokenCallback] = None

    def agent_context(self, message_type: MessageType, **metadata) -> AgentContext:
        return AgentContext(
            session_id=self.session_id,
            message_type=message_type,
            language=self.language,
            metadata=metadata
        )


@dataclass
class DocumentAnalysis:
    record: DocumentRecord
    result: TransitionResult


class FlowHandlers:
    """
    Handler implementations for the advisor flow.

    Scripted steps are deterministic; the summary, free chat, scenario
    analysis and document analysis call the GPT service through the agent.
    """

    def __init__(
        self,
        advisor_agent: Optional[AdvisorAgent] = None,
        validation_service: Optional[ValidationService] = None,
        prompt_manager: Optional[PromptManager] = None,
        gpt_service: Optional[GPTService] = None
    ):
        self.prompt_manager = prompt_manager or get_prompt_manager()
        self.advisor_agent = advisor_agent or AdvisorAgent(
            prompt_manager=self.prompt_manager,
            gpt_service=gpt_service
        )
        self.validation_service = validation_service or ValidationService()

    def _text(self, prompt_type: PromptType, ctx: FlowContext, **kwargs) -> str:
        return self.prompt_manager.get_localized(prompt_type, ctx.language, **kwargs)

    def _answer(self, user_input: str, field_name: str, ctx: FlowContext) -> str:
        answer = self.validation_service.normalize_answer(user_input)
        if not answer:
            raise ValidationError("Answer cannot be empty", field=field_name, details={"state": ctx.state.value})
        return answer

    # ===========================================
    # INTRO / CONSENT
    # ===========================================

    async def handle_greeting(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """Session start, emits the greeting and stays in INTRO"""
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.GREETING))
        return TransitionResult(next_state=to_state, assistant_text=message.text, ui=message.ui, event="chat_started")

    async def handle_intro(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """Any input in INTRO asks for consent"""
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.CONSENT_REQUEST))
        return TransitionResult(next_state=to_state, assistant_text=message.text, ui=message.ui)

    async def handle_consent_given(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.JURISDICTION_QUESTION))
        return TransitionResult(
            next_state=to_state,
            assistant_text=message.text,
            ui=message.ui,
            profile_updates={"has_consent": True},
            event="consent_given"
        )

    async def handle_consent_declined(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.CONSENT_REPROMPT))
        return TransitionResult(next_state=to_state, assistant_text=message.text, ui=message.ui, event="consent_declined")

    # ===========================================
    # JURISDICTION / DIAGNOSTIC
    # ===========================================

    async def handle_jurisdiction(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """Stores the jurisdiction exactly as typed and asks diagnostic question 1"""
        jurisdiction = user_input
        preface = self._text(PromptType.DIAGNOSTIC_START, ctx, jurisdiction=jurisdiction.strip())
        message = await self.advisor_agent.respond(
            ctx.agent_context(MessageType.DIAGNOSTIC_QUESTION, step=1, preface=preface)
        )
        return TransitionResult(
            next_state=to_state,
            assistant_text=message.text,
            ui=message.ui,
            profile_updates={"jurisdiction": jurisdiction},
            event="jurisdiction_set"
        )

    async def handle_diagnostic_answer(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """Records step_n and asks question n+1"""
        step = ctx.state.diagnostic_step
        answer = self._answer(user_input, f"step_{step}", ctx)
        message = await self.advisor_agent.respond(
            ctx.agent_context(MessageType.DIAGNOSTIC_QUESTION, step=to_state.diagnostic_step)
        )
        return TransitionResult(
            next_state=to_state,
            assistant_text=message.text,
            ui=message.ui,
            diagnostic_data_patch={f"step_{step}": answer},
            event="diagnostic_step"
        )

    async def handle_diagnostic_completion(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """
        Records step_7 and produces the summary.

        A failed generative call is not an error here: the fixed summary is
        used instead and the transition still completes.
        """
        step = ctx.state.diagnostic_step
        answer = self._answer(user_input, f"step_{step}", ctx)
        patch = {f"step_{step}": answer}
        full_data = {**ctx.diagnostic_data, **patch}
        profile = ctx.profile or Profile(user_id="anonymous")
        agent = self.advisor_agent

        summary_data: Optional[Dict[str, Any]] = None
        try:
            analysis = await agent.summarize_diagnostic(full_data, profile, ctx.language)
            text = "\n\n".join([
                agent.format_analysis(ctx.language, analysis["summary"], analysis["risks"], analysis["recommendations"]),
                self._text(PromptType.SUMMARY_NEXT_STEPS, ctx),
            ])
            summary_data = analysis
        except (ServiceError, ConfigurationError, PromptError) as e:
            logger.warning(f"Summary generation failed, using fixed summary: {e}")
            text = self._text(PromptType.FALLBACK_SUMMARY, ctx)

        ui = [
            UIComponent(type=UIComponentType.SUMMARY, data={"diagnosticData": full_data, **(summary_data or {})}),
            agent.summary_options(ctx.language),
            agent.progress(7, 7),
        ]
        return TransitionResult(
            next_state=to_state,
            assistant_text=text,
            ui=ui,
            diagnostic_data_patch=patch,
            profile_updates={"financial_data": full_data},
            event="diagnostic_completed"
        )

    # ===========================================
    # FREE CHAT
    # ===========================================

    async def handle_free_chat(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """
        Generative reply over the full transcript, streamed through ctx.on_token.

        Raises:
            GPTServiceError: Surfaced to the user; nothing is persisted
        """
        content = self._answer(user_input, "content", ctx)
        reply = await self.advisor_agent.stream_reply(
            history=ctx.history,
            user_input=content,
            profile=ctx.profile or Profile(user_id="anonymous"),
            diagnostic_data=ctx.diagnostic_data,
            lang=ctx.language,
            on_token=ctx.on_token
        )
        return TransitionResult(next_state=to_state, assistant_text=reply, event="ai_call")

    # ===========================================
    # SCENARIOS
    # ===========================================

    async def handle_scenario_list(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.SCENARIO_LIST))
        return TransitionResult(next_state=to_state, assistant_text=message.text, ui=message.ui, clear_scenario=True)

    async def handle_scenario_select(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        scenario_id = (ctx.payload.get("scenarioId") or ctx.payload.get("scenario_id") or user_input or "").strip()
        if scenario_prompts.get_scenario(scenario_id) is None:
            raise ValidationError(f"Unknown scenario: {scenario_id}", field="scenarioId", value=scenario_id)

        message = await self.advisor_agent.respond(
            ctx.agent_context(MessageType.SCENARIO_QUESTION, scenario_id=scenario_id, step_index=0)
        )
        return TransitionResult(
            next_state=to_state,
            assistant_text=message.text,
            ui=message.ui,
            scenario=ScenarioRun(scenario_id=scenario_id),
            event="scenario_started"
        )

    async def handle_scenario_step(self, ctx: FlowContext, user_input: str, to_state: ConversationState) -> TransitionResult:
        """Records the wizard answer; the last one triggers the analysis and leaves for CHAT"""
        run = ctx.scenario
        if run is None:
            raise FlowError("No scenario in progress", current_state=ctx.state.value)

        scenario = scenario_prompts.get_scenario(run.scenario_id)
        if scenario is None:
            raise FlowError(f"Unknown scenario in progress: {run.scenario_id}", current_state=ctx.state.value)

        step = scenario.steps[run.step_index]
        answer = self._answer(user_input, step.id, ctx)
        answers = {**run.answers, step.id: answer}

        if run.step_index + 1 < len(scenario.steps):
            next_run = ScenarioRun(scenario_id=scenario.id, step_index=run.step_index + 1, answers=answers)
            message = await self.advisor_agent.respond(
                ctx.agent_context(MessageType.SCENARIO_QUESTION, scenario_id=scenario.id, step_index=next_run.step_index)
            )
            return TransitionResult(
                next_state=to_state,
                assistant_text=message.text,
                ui=message.ui,
                scenario=next_run,
                event="scenario_step"
            )

        agent = self.advisor_agent
        profile = ctx.profile or Profile(user_id="anonymous")
        analysis = await agent.analyze_scenario(
            scenario.id, answers, profile, ctx.language, fallback_jurisdiction=settings.FALLBACK_JURISDICTION
        )
        header = self._text(PromptType.SCENARIO_RESULT_HEADER, ctx, title=scenario.title_for(ctx.language))
        text = agent.format_analysis(ctx.language, analysis["summary"], analysis["risks"],
                                     analysis["recommendations"], header=header)
        return TransitionResult(
            next_state=ConversationState.CHAT,
            assistant_text=text,
            ui=[UIComponent(
                type=UIComponentType.SUMMARY,
                data={"scenario": scenario.id, "answers": answers, **analysis}
            )],
            clear_scenario=True,
            event="scenario_completed"
        )

    # ===========================================
    # DOCUMENTS
    # ===========================================

    async def analyze_document(self, ctx: FlowContext, user_id: str, name: str, url: str) -> DocumentAnalysis:
        """
        Extracts data from an uploaded document. State is unchanged.

        Raises:
            GPTServiceError: If the analysis fails; nothing is stored
        """
        if not name or not url:
            raise ValidationError("Document name and url are required", field="url")

        extracted = await self.advisor_agent.analyze_document(name, url, ctx.language)
        record = DocumentRecord(
            user_id=user_id,
            name=name,
            url=url,
            document_type=extracted["document_type"],
            extracted_data=extracted["extracted_entities"],
            summary=extracted["summary"]
        )
        text = self._text(PromptType.DOCUMENT_ANALYZED, ctx, name=name, summary=extracted["summary"])
        result = TransitionResult(
            next_state=ctx.state,
            assistant_text=text,
            ui=[UIComponent(type=UIComponentType.DOCUMENT_UPLOAD, data={"documentId": record.id,
                                                                        "documentType": record.document_type})],
            event="document_analyzed"
        )
        return DocumentAnalysis(record=record, result=result)

    # ===========================================
    # POLICY
    # ===========================================

    async def handle_refusal(self, ctx: FlowContext) -> TransitionResult:
        """Fixed refusal; state and data unchanged"""
        message = await self.advisor_agent.respond(ctx.agent_context(MessageType.POLICY_REFUSAL))
        return TransitionResult(next_state=ctx.state, assistant_text=message.text, refused=True, event="policy_refusal")
