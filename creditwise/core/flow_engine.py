# creditwise/core/flow_engine.py
"""
Flow Engine - FSM-based control of the advisor conversation.

The engine owns the transition table (state + event -> state + handler).
User text and explicit actions are classified into FlowEvents, the matching
transition's handler builds the TransitionResult. The engine itself is pure
with respect to its inputs: it works on copies and returns deltas.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from enum import Enum
from dataclasses import dataclass
import logging

from creditwise.core.exceptions import CreditWiseError, FlowError, TransitionFailedError, ValidationError
from creditwise.core.flow_handlers import FlowContext, FlowHandlers
from creditwise.models.conversation import (
    ConversationState,
    Profile,
    ScenarioRun,
    TransitionResult,
)
from creditwise.prompts import scenario_prompts
from creditwise.prompts.diagnostic_prompts import TOTAL_STEPS
from creditwise.services.content_guard import ContentGuard
from creditwise.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[FlowContext, str, ConversationState], Awaitable[TransitionResult]]
TransitionCondition = Callable[[FlowContext, str], bool]


class FlowEvent(str, Enum):
    """Events that can trigger state transitions"""

    # Typed input
    USER_INPUT = "user_input"
    CONSENT_GIVEN = "consent_given"
    CONSENT_DECLINED = "consent_declined"
    JURISDICTION_SET = "jurisdiction_set"
    DIAGNOSTIC_ANSWER = "diagnostic_answer"
    FREE_CHAT = "free_chat"

    # Explicit actions
    START_SESSION = "start_session"
    SCENARIO_LIST = "scenario_list"
    SCENARIO_SELECT = "scenario_select"
    SCENARIO_STEP = "scenario_step"


# Payload field carrying the text of each action
ACTION_INPUT_FIELDS = {
    FlowEvent.JURISDICTION_SET: "jurisdiction",
    FlowEvent.DIAGNOSTIC_ANSWER: "answer",
    FlowEvent.FREE_CHAT: "content",
    FlowEvent.SCENARIO_SELECT: "scenarioId",
    FlowEvent.SCENARIO_STEP: "answer",
}


@dataclass
class Transition:
    """Represents a state transition"""
    from_state: ConversationState
    event: FlowEvent
    to_state: ConversationState
    condition: Optional[TransitionCondition] = None
    handler: Optional[TransitionHandler] = None
    description: str = ""


class FlowEngine:
    """
    FSM-based flow engine.

    This engine:
    1. Defines all valid state transitions explicitly
    2. Classifies input and actions into events
    3. Runs the content check before anything else
    4. Delegates the business logic to FlowHandlers
    """

    def __init__(
        self,
        flow_handlers: Optional[FlowHandlers] = None,
        content_guard: Optional[ContentGuard] = None,
        validation_service: Optional[ValidationService] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.handlers = flow_handlers or FlowHandlers()
        self.content_guard = content_guard or ContentGuard()
        self.validation_service = validation_service or self.handlers.validation_service

        self.transitions: List[Transition] = []
        self._transition_map: Dict[Tuple[ConversationState, FlowEvent], Transition] = {}

        self._setup_transitions()
        self._build_transition_map()

        logger.info(f"FlowEngine initialized with {len(self.transitions)} transitions")

    def _setup_transitions(self):
        """Define all state transitions with their corresponding handlers"""

        # ===========================================
        # INTRO / CONSENT
        # ===========================================

        self.add_transition(
            from_state=ConversationState.INTRO,
            event=FlowEvent.START_SESSION,
            to_state=ConversationState.INTRO,
            handler=self.handlers.handle_greeting,
            description="New session -> greeting"
        )

        self.add_transition(
            from_state=ConversationState.INTRO,
            event=FlowEvent.USER_INPUT,
            to_state=ConversationState.CONSENT,
            handler=self.handlers.handle_intro,
            description="Any input -> consent request"
        )

        self.add_transition(
            from_state=ConversationState.CONSENT,
            event=FlowEvent.CONSENT_GIVEN,
            to_state=ConversationState.JURISDICTION,
            handler=self.handlers.handle_consent_given,
            description="Consent given -> ask jurisdiction"
        )

        self.add_transition(
            from_state=ConversationState.CONSENT,
            event=FlowEvent.CONSENT_DECLINED,
            to_state=ConversationState.INTRO,
            handler=self.handlers.handle_consent_declined,
            description="Consent declined -> re-prompt"
        )

        # ===========================================
        # JURISDICTION / DIAGNOSTIC
        # ===========================================

        self.add_transition(
            from_state=ConversationState.JURISDICTION,
            event=FlowEvent.JURISDICTION_SET,
            to_state=ConversationState.DIAGNOSTIC_1,
            handler=self.handlers.handle_jurisdiction,
            description="Jurisdiction stored -> first diagnostic question"
        )

        for step in range(1, TOTAL_STEPS + 1):
            state = ConversationState.diagnostic(step)
            last = step == TOTAL_STEPS
            self.add_transition(
                from_state=state,
                event=FlowEvent.DIAGNOSTIC_ANSWER,
                to_state=state.next_diagnostic(),
                handler=self.handlers.handle_diagnostic_completion if last else self.handlers.handle_diagnostic_answer,
                description=f"Answer {step} -> " + ("summary" if last else f"question {step + 1}")
            )

        # ===========================================
        # FREE CHAT
        # ===========================================

        for state in (ConversationState.SUMMARY, ConversationState.CHAT):
            self.add_transition(
                from_state=state,
                event=FlowEvent.FREE_CHAT,
                to_state=ConversationState.CHAT,
                handler=self.handlers.handle_free_chat,
                description=f"Free chat from {state.value} -> chat"
            )

        for state in (ConversationState.SCENARIOS, ConversationState.SCENARIO_RUN):
            self.add_transition(
                from_state=state,
                event=FlowEvent.FREE_CHAT,
                to_state=state,
                handler=self.handlers.handle_free_chat,
                description=f"Free chat inside {state.value}, wizard kept"
            )

        # ===========================================
        # SCENARIOS
        # ===========================================

        for state in ConversationState:
            if not state.is_free_chat:
                continue
            self.add_transition(
                from_state=state,
                event=FlowEvent.SCENARIO_LIST,
                to_state=ConversationState.SCENARIOS,
                handler=self.handlers.handle_scenario_list,
                description=f"Scenario list from {state.value}"
            )
            self.add_transition(
                from_state=state,
                event=FlowEvent.SCENARIO_SELECT,
                to_state=ConversationState.SCENARIO_RUN,
                handler=self.handlers.handle_scenario_select,
                description=f"Scenario selected from {state.value} -> first wizard question"
            )

        self.add_transition(
            from_state=ConversationState.SCENARIO_RUN,
            event=FlowEvent.SCENARIO_STEP,
            to_state=ConversationState.SCENARIO_RUN,
            condition=lambda ctx, user_input: ctx.scenario is not None,
            handler=self.handlers.handle_scenario_step,
            description="Wizard answer -> next question, or analysis and chat after the last"
        )

    # ===========================================
    # CORE FSM METHODS
    # ===========================================

    def add_transition(
        self,
        from_state: ConversationState,
        event: FlowEvent,
        to_state: ConversationState,
        condition: Optional[TransitionCondition] = None,
        handler: Optional[TransitionHandler] = None,
        description: str = ""
    ):
        """Add a new transition to the FSM"""
        self.transitions.append(Transition(
            from_state=from_state,
            event=event,
            to_state=to_state,
            condition=condition,
            handler=handler,
            description=description
        ))

    def _build_transition_map(self):
        """Build fast lookup map for transitions"""
        self._transition_map.clear()

        for transition in self.transitions:
            key = (transition.from_state, transition.event)
            if key in self._transition_map:
                self.logger.warning(
                    f"Duplicate transition for {transition.from_state.value} + {transition.event.value}, "
                    f"keeping the last one"
                )
            self._transition_map[key] = transition

    def get_valid_transitions(self, current_state: ConversationState) -> List[Transition]:
        """Get all valid transitions from current state"""
        return [t for t in self.transitions if t.from_state == current_state]

    def can_transition(
        self,
        current_state: ConversationState,
        event: FlowEvent,
        ctx: Optional[FlowContext] = None,
        user_input: str = ""
    ) -> bool:
        """Check if a transition is valid"""
        transition = self._transition_map.get((current_state, event))
        if transition is None:
            return False

        if transition.condition and ctx is not None:
            return transition.condition(ctx, user_input)

        return True

    async def process_event(self, ctx: FlowContext, event: FlowEvent, user_input: str = "") -> TransitionResult:
        """
        Process an event and execute the matching transition.

        Raises:
            FlowError: If the transition is invalid
            TransitionFailedError: If the handler fails unexpectedly
        """
        current_state = ctx.state
        self.logger.info(f"Processing event {event.value} from state {current_state.value}")

        if not self.can_transition(current_state, event, ctx, user_input):
            valid_events = [t.event.value for t in self.get_valid_transitions(current_state)]
            logger.warning(f"Invalid transition: {current_state.value} + {event.value}. Valid events: {valid_events}")
            raise FlowError(
                f"Invalid transition: {current_state.value} + {event.value}",
                current_state=current_state.value,
                details={"event": event.value, "valid_events": valid_events}
            )

        transition = self._transition_map[(current_state, event)]
        if transition.handler is None:
            raise FlowError(f"No handler for {current_state.value} + {event.value}", current_state=current_state.value)

        try:
            result = await transition.handler(ctx, user_input, transition.to_state)
        except CreditWiseError:
            raise
        except Exception as e:
            self.logger.error(f"Transition handler failed: {e}", exc_info=True)
            raise TransitionFailedError(
                f"Transition execution failed: {str(e)}",
                current_state=current_state.value
            ) from e

        if result.next_state != transition.to_state:
            self.logger.info(f"Handler overrode transition: {current_state.value} -> {result.next_state.value}")
        else:
            self.logger.info(f"Transition successful: {current_state.value} -> {result.next_state.value}")
        return result

    def classify_user_input(self, user_input: str, current_state: ConversationState) -> FlowEvent:
        """
        Classify typed input into the event for the current state.

        Args:
            user_input: User's input text
            current_state: Current conversation state

        Returns:
            FlowEvent to process
        """
        if current_state == ConversationState.CONSENT:
            if self.validation_service.is_affirmative(user_input):
                return FlowEvent.CONSENT_GIVEN
            return FlowEvent.CONSENT_DECLINED

        if current_state == ConversationState.JURISDICTION:
            return FlowEvent.JURISDICTION_SET

        if current_state.is_diagnostic:
            return FlowEvent.DIAGNOSTIC_ANSWER

        if current_state.is_free_chat:
            return FlowEvent.FREE_CHAT

        return FlowEvent.USER_INPUT

    @staticmethod
    def classify_action(action: str, payload: Optional[Dict[str, Any]] = None) -> Tuple[FlowEvent, str]:
        """
        Map an action name and payload to (event, input text).

        Raises:
            ValidationError: For unknown actions
        """
        try:
            event = FlowEvent(action)
        except ValueError:
            raise ValidationError(f"Unknown action: {action}", field="action", value=action)

        if event == FlowEvent.USER_INPUT:
            raise ValidationError(f"Unknown action: {action}", field="action", value=action)

        field_name = ACTION_INPUT_FIELDS.get(event)
        user_input = str((payload or {}).get(field_name) or "") if field_name else ""
        return event, user_input

    # ===========================================
    # PUBLIC OPERATIONS
    # ===========================================

    def _build_context(
        self,
        state: ConversationState,
        diagnostic_data: Dict[str, str],
        profile: Optional[Profile],
        context: Optional[Dict[str, Any]]
    ) -> FlowContext:
        context = context or {}
        scenario: Optional[ScenarioRun] = context.get("scenario")
        return FlowContext(
            session_id=context.get("session_id") or "local",
            state=state,
            diagnostic_data=dict(diagnostic_data or {}),
            profile=profile.model_copy(deep=True) if profile is not None else None,
            language=context.get("language") or "ru",
            history=tuple(context.get("history") or ()),
            scenario=scenario.model_copy(deep=True) if scenario is not None else None,
            payload=dict(context.get("payload") or {}),
            on_token=context.get("on_token")
        )

    def is_refused(self, text: str) -> bool:
        """Prohibited-content check applied before any transition"""
        return bool(text) and self.content_guard.is_prohibited(text)

    async def transition(
        self,
        state: ConversationState,
        diagnostic_data: Dict[str, str],
        user_input: str,
        profile: Optional[Profile],
        context: Optional[Dict[str, Any]] = None
    ) -> TransitionResult:
        """
        One FSM step for typed input.

        Never mutates its arguments. ``context`` may carry session_id,
        language, history, scenario and on_token.
        """
        ctx = self._build_context(state, diagnostic_data, profile, context)
        if self.is_refused(user_input):
            logger.info(f"Refusing prohibited input in state {state.value}")
            return await self.handlers.handle_refusal(ctx)

        event = self.classify_user_input(user_input, state)
        return await self.process_event(ctx, event, user_input)

    async def apply_action(
        self,
        state: ConversationState,
        diagnostic_data: Dict[str, str],
        action: str,
        payload: Optional[Dict[str, Any]],
        profile: Optional[Profile],
        context: Optional[Dict[str, Any]] = None
    ) -> TransitionResult:
        """
        One FSM step for an explicit action.

        Raises:
            ValidationError: Unknown action
            FlowError: Action not valid in the current state
        """
        event, user_input = self.classify_action(action, payload)
        ctx = self._build_context(state, diagnostic_data, profile, {**(context or {}), "payload": payload or {}})
        if self.is_refused(user_input):
            logger.info(f"Refusing prohibited action input in state {state.value}")
            return await self.handlers.handle_refusal(ctx)

        return await self.process_event(ctx, event, user_input)

    def is_metered(
        self,
        state: ConversationState,
        event: FlowEvent,
        scenario: Optional[ScenarioRun] = None
    ) -> bool:
        """True when the transition costs one credit"""
        if not self.can_transition(state, event):
            return False

        if event == FlowEvent.FREE_CHAT:
            return True

        if event == FlowEvent.SCENARIO_STEP and scenario is not None:
            definition = scenario_prompts.get_scenario(scenario.scenario_id)
            return definition is not None and scenario.step_index + 1 >= len(definition.steps)

        return False

    # ===========================================
    # INTROSPECTION
    # ===========================================

    def get_flow_summary(self) -> Dict[str, Any]:
        """Get summary of the FSM for debugging"""
        states = sorted({t.from_state.value for t in self.transitions} | {t.to_state.value for t in self.transitions})
        events = sorted({t.event.value for t in self.transitions})
        return {
            "total_transitions": len(self.transitions),
            "states": states,
            "events": events,
            "transitions": [
                {
                    "from": t.from_state.value,
                    "event": t.event.value,
                    "to": t.to_state.value,
                    "has_handler": t.handler is not None,
                    "has_condition": t.condition is not None,
                    "description": t.description,
                }
                for t in self.transitions
            ],
        }

    def validate_fsm(self) -> List[str]:
        """
        Validate the FSM for common issues.

        Returns:
            List of issues, empty when the FSM is consistent
        """
        issues = []

        reachable = {ConversationState.INTRO}
        frontier = [ConversationState.INTRO]
        while frontier:
            state = frontier.pop()
            for t in self.get_valid_transitions(state):
                if t.to_state not in reachable:
                    reachable.add(t.to_state)
                    frontier.append(t.to_state)

        for state in ConversationState:
            if state not in reachable:
                issues.append(f"State {state.value} is unreachable from INTRO")
            if not self.get_valid_transitions(state):
                issues.append(f"State {state.value} has no outgoing transitions")

        for t in self.transitions:
            if t.handler is None:
                issues.append(f"Transition {t.from_state.value} + {t.event.value} has no handler")

        return issues


def create_flow_engine(
    flow_handlers: Optional[FlowHandlers] = None,
    content_guard: Optional[ContentGuard] = None
) -> FlowEngine:
    """Factory for a FlowEngine with default handlers and content guard"""
    return FlowEngine(flow_handlers=flow_handlers, content_guard=content_guard)
