# creditwise/core/chat_service.py
"""
Chat Service - the single entry point the API talks to.

One turn runs: content guard -> metering -> executor -> persist, under a
per-session lock so at most one transition is in flight per session. The
service owns one DualModeExecutor per conversation session; the executors
never share mode.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from creditwise.agents.advisor_agent import AdvisorAgent
from creditwise.core.config import settings
from creditwise.core.dual_mode_executor import DualModeExecutor, ExecutionMode
from creditwise.core.exceptions import (
    ContentPolicyError,
    FlowError,
    InsufficientCreditsError,
    SessionError,
    StorageError,
    TransitionInProgressError,
    ValidationError,
)
from creditwise.core.flow_engine import FlowEngine
from creditwise.core.flow_handlers import FlowHandlers, TokenCallback
from creditwise.core.local_interpreter import ConversationRequest, LocalInterpreter
from creditwise.core.prompt_manager import PromptManager, get_prompt_manager
from creditwise.core.security.identity import Identity
from creditwise.models.conversation import (
    ChatSession,
    ConversationState,
    Message,
    MessageMetadata,
    MessageRole,
    Profile,
    ScenarioRun,
    SessionSnapshot,
    TransitionResult,
)
from creditwise.services.content_guard import ContentGuard
from creditwise.services.credit_service import CreditService
from creditwise.services.gpt_service import GPTService
from creditwise.services.orchestrator_client import OrchestratorClient
from creditwise.services.redis_service import RedisService
from creditwise.services.session_store import ConversationStore, EphemeralConversationStore, SessionStoreFactory
from creditwise.services.validation_service import ValidationService

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    """Messages persisted by one turn plus where the conversation ended up"""
    session_id: str
    state: ConversationState
    messages: List[Message]
    mode: ExecutionMode
    refused: bool = False
    credits: Optional[int] = None

    @property
    def assistant(self) -> Optional[Message]:
        for message in reversed(self.messages):
            if message.role == MessageRole.ASSISTANT:
                return message
        return None


@dataclass
class SessionView:
    """Everything the client needs to render a session"""
    session: ChatSession
    state: ConversationState
    diagnostic_data: Dict[str, str]
    messages: List[Message]
    profile: Profile
    mode: ExecutionMode
    scenario: Optional[ScenarioRun] = None
    is_guest: bool = True
    guest_id: Optional[str] = None
    credits: Optional[int] = None
    remote_divergence: Dict[str, Any] = field(default_factory=dict)


class ChatService:
    """
    Conversation management for both guests and authenticated users.

    This service:
    1. Picks the store from the caller's Identity
    2. Enforces the content policy and credit metering
    3. Dispatches through the per-session executor
    4. Persists messages, snapshot and profile deltas
    """

    def __init__(
        self,
        redis_service: Optional[RedisService] = None,
        gpt_service: Optional[GPTService] = None,
        orchestrator_client: Optional[OrchestratorClient] = None,
        content_guard: Optional[ContentGuard] = None,
        credit_service: Optional[CreditService] = None,
        store_factory: Optional[SessionStoreFactory] = None,
        flow_engine: Optional[FlowEngine] = None,
        prompt_manager: Optional[PromptManager] = None,
        max_tracked_sessions: Optional[int] = None
    ):
        self.redis_service = redis_service or RedisService()
        self.gpt_service = gpt_service or GPTService()
        self.orchestrator_client = orchestrator_client
        if self.orchestrator_client is None and settings.CHAT_PROXY_URL:
            self.orchestrator_client = OrchestratorClient()

        self.content_guard = content_guard or ContentGuard()
        self.validation_service = ValidationService()
        self.credit_service = credit_service or CreditService(self.redis_service)
        self.store_factory = store_factory or SessionStoreFactory(self.redis_service)
        self.prompt_manager = prompt_manager or get_prompt_manager()

        if flow_engine is None:
            handlers = FlowHandlers(
                advisor_agent=AdvisorAgent(prompt_manager=self.prompt_manager, gpt_service=self.gpt_service),
                validation_service=self.validation_service,
                prompt_manager=self.prompt_manager
            )
            flow_engine = FlowEngine(handlers, content_guard=self.content_guard)
        self.flow_engine = flow_engine
        self.local = LocalInterpreter(self.flow_engine)

        # Per-session runtime state, least recently used first
        self.max_tracked_sessions = max_tracked_sessions or settings.MAX_TRACKED_SESSIONS
        self._executors: "OrderedDict[str, DualModeExecutor]" = OrderedDict()
        self._locks: "OrderedDict[str, asyncio.Lock]" = OrderedDict()
        logger.info("ChatService initialized")

    async def initialize(self) -> None:
        """Connect storage up front; the GPT and orchestrator clients stay lazy"""
        await self.redis_service.ensure_initialized()

    async def shutdown(self) -> None:
        await self.gpt_service.shutdown()
        await self.redis_service.shutdown()
        if self.orchestrator_client is not None:
            await self.orchestrator_client.shutdown()

    # ===========================================
    # Helpers
    # ===========================================

    def executor_for(self, session_id: str) -> DualModeExecutor:
        executor = self._executors.get(session_id)
        if executor is None:
            executor = DualModeExecutor(self.local, self.orchestrator_client)
            self._executors[session_id] = executor
            self._trim_tracked(keep=session_id)
        else:
            self._executors.move_to_end(session_id)
        return executor

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
            self._trim_tracked(keep=session_id)
        else:
            self._locks.move_to_end(session_id)
        return lock

    def _forget_session(self, session_id: str) -> None:
        self._executors.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    def _trim_tracked(self, keep: str) -> None:
        """Drop the least recently used sessions beyond the cap; held locks are kept"""
        for tracked in (self._executors, self._locks):
            for session_id in list(tracked):
                if len(tracked) <= self.max_tracked_sessions:
                    break
                entry = tracked[session_id]
                if session_id == keep or (isinstance(entry, asyncio.Lock) and entry.locked()):
                    continue
                del tracked[session_id]

    async def _load_profile(self, store: ConversationStore) -> Profile:
        try:
            return await store.load_profile()
        except StorageError as e:
            logger.warning(f"Profile load failed for {store.user_id}, using synthesized profile: {e}")
            return Profile(
                user_id=store.user_id,
                display_name="Guest",
                jurisdiction=settings.FALLBACK_JURISDICTION
            )

    async def _require_session(self, store: ConversationStore, session_id: str) -> ChatSession:
        session = await store.get_session(session_id)
        if session is None:
            raise SessionError("Session not found", session_id=session_id)
        return session

    async def _balance(self, identity: Identity) -> Optional[int]:
        if not identity.durable:
            return None
        try:
            return await self.credit_service.get_balance(identity.user_id)
        except StorageError as e:
            logger.warning(f"Balance unavailable for {identity.user_id}: {e}")
            return None

    def _check_pii(self, text: str) -> None:
        verdict = self.content_guard.inspect(text)
        if verdict.is_pii:
            logger.info(f"Blocked message containing {verdict.category}")
            raise ContentPolicyError(
                "Message contains personal data",
                violation=verdict.violation,
                category=verdict.category
            )

    async def _charge(self, identity: Identity) -> None:
        """Debit one credit for a paid interaction; guests are never metered"""
        if not identity.durable:
            return
        if not await self.credit_service.consume(identity.user_id):
            raise InsufficientCreditsError(
                "Insufficient credits",
                user_id=identity.user_id,
                balance=0
            )

    def _user_message(self, session_id: str, text: str, snapshot: SessionSnapshot) -> Message:
        return Message(
            session_id=session_id,
            role=MessageRole.USER,
            content=text,
            metadata=MessageMetadata(state=snapshot.state, diagnostic_data=dict(snapshot.diagnostic_data))
        )

    async def _commit(
        self,
        store: ConversationStore,
        snapshot: SessionSnapshot,
        result: TransitionResult
    ) -> Message:
        """Persist the assistant message, the new snapshot and profile deltas"""
        diagnostic_data = {**snapshot.diagnostic_data, **result.diagnostic_data_patch}
        scenario = None if result.clear_scenario else (result.scenario or snapshot.scenario)

        assistant = await store.append_message(Message(
            session_id=snapshot.session_id,
            role=MessageRole.ASSISTANT,
            content=result.assistant_text,
            metadata=MessageMetadata(
                state=result.next_state,
                diagnostic_data=diagnostic_data,
                ui=result.ui,
                event=result.event
            )
        ))
        await store.save_snapshot(SessionSnapshot(
            session_id=snapshot.session_id,
            state=result.next_state,
            diagnostic_data=diagnostic_data,
            scenario=scenario
        ))

        if result.profile_updates:
            try:
                await store.update_profile(result.profile_updates)
            except StorageError as e:
                logger.error(f"Profile update failed for {store.user_id}: {e}")

        if result.event:
            logger.info(f"[Event] {result.event}: user={store.user_id} session={snapshot.session_id[:8]} "
                        f"state={result.next_state.value}")
        return assistant

    # ===========================================
    # Sessions
    # ===========================================

    async def _greet(self, identity: Identity, store: ConversationStore, session: ChatSession,
                     profile: Profile, language: str) -> None:
        executor = self.executor_for(session.id)
        result = await executor.start(ConversationRequest(
            session_id=session.id,
            state=ConversationState.INTRO,
            profile=profile,
            language=language,
            token=identity.token
        ))
        await self._commit(store, SessionSnapshot(session_id=session.id), result)

    async def init_session(self, identity: Identity, language: Optional[str] = None) -> SessionView:
        """
        Load the caller's latest session, creating and greeting one if needed.

        In remote mode the orchestrator's view is compared with the stored
        snapshot; divergence is logged, the stored snapshot wins.
        """
        language = language or settings.DEFAULT_LANGUAGE
        store = self.store_factory.for_identity(identity)
        profile = await self._load_profile(store)

        session = await store.latest_session()
        if session is None:
            session = await store.create_session()
            await self._greet(identity, store, session, profile, language)

        executor = self.executor_for(session.id)
        await executor.initialize()

        snapshot = await store.load_snapshot(session.id)
        divergence = await self._remote_divergence(executor, snapshot, identity)

        return SessionView(
            session=session,
            state=snapshot.state,
            diagnostic_data=snapshot.diagnostic_data,
            scenario=snapshot.scenario,
            messages=await store.list_messages(session.id),
            profile=await self._load_profile(store),
            mode=executor.mode,
            is_guest=identity.is_guest,
            guest_id=identity.user_id if identity.is_guest else None,
            credits=await self._balance(identity),
            remote_divergence=divergence
        )

    async def _remote_divergence(
        self,
        executor: DualModeExecutor,
        snapshot: SessionSnapshot,
        identity: Identity
    ) -> Dict[str, Any]:
        remote = await executor.fetch_remote_snapshot(snapshot.session_id, token=identity.token)
        if remote is None:
            return {}

        divergence: Dict[str, Any] = {}
        if remote.state != snapshot.state:
            divergence["state"] = {"local": snapshot.state.value, "remote": remote.state.value}
        remote_data = (remote.meta.diagnostic_data if remote.meta else None) or {}
        if remote_data and {k: str(v) for k, v in remote_data.items()} != snapshot.diagnostic_data:
            divergence["diagnostic_data"] = True

        if divergence:
            logger.warning(f"Remote snapshot diverges for session {snapshot.session_id[:8]}: {divergence}")
        return divergence

    async def start_new_session(self, identity: Identity, language: Optional[str] = None) -> SessionView:
        """Start a fresh conversation; for guests this replaces the blob's session"""
        language = language or settings.DEFAULT_LANGUAGE
        store = self.store_factory.for_identity(identity)
        profile = await self._load_profile(store)
        previous = await store.latest_session()
        session = await store.create_session()
        if previous is not None:
            self._forget_session(previous.id)
        await self._greet(identity, store, session, profile, language)
        return await self.init_session(identity, language)

    async def end_guest_session(self, guest_id: str) -> None:
        """Delete a guest's blob. Nothing is migrated to an account."""
        store = EphemeralConversationStore(self.redis_service, Identity.guest(guest_id))
        session = await store.latest_session()
        await store.clear()
        if session is not None:
            self._forget_session(session.id)

    # ===========================================
    # Turns
    # ===========================================

    async def send_message(
        self,
        identity: Identity,
        session_id: str,
        content: str,
        language: Optional[str] = None,
        on_token: Optional[TokenCallback] = None
    ) -> TurnResult:
        """
        Process one typed message.

        Raises:
            ValidationError: Empty or oversized message
            ContentPolicyError: Message contains PII (nothing persisted)
            InsufficientCreditsError: Paid turn with no credits left
            TransitionInProgressError: Another turn is running for the session
            GPTServiceError: Free-chat generation failed (no assistant message)
        """
        content = self.check_message(content)
        return await self._run_turn(identity, session_id, language, content=content, on_token=on_token)

    def check_message(self, content: str) -> str:
        """
        Validate and PII-screen typed input; returns it exactly as typed.

        Raises:
            ValidationError: Empty or oversized message
            ContentPolicyError: Message contains PII
        """
        check = self.validation_service.validate_message(content)
        if not check.valid:
            raise ValidationError(check.message or "Invalid message", field="content",
                                  details={"error_type": check.error_type})
        self._check_pii(content)
        return content

    async def send_action(
        self,
        identity: Identity,
        session_id: str,
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        language: Optional[str] = None,
        on_token: Optional[TokenCallback] = None
    ) -> TurnResult:
        """Process one explicit action (option chip, wizard step, ...)"""
        _, text = self.flow_engine.classify_action(action, payload)
        if text:
            self._check_pii(text)

        return await self._run_turn(identity, session_id, language, action=action,
                                    payload=payload or {}, on_token=on_token)

    async def _run_turn(
        self,
        identity: Identity,
        session_id: str,
        language: Optional[str],
        content: Optional[str] = None,
        action: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        on_token: Optional[TokenCallback] = None
    ) -> TurnResult:
        lock = self._lock_for(session_id)
        if lock.locked():
            raise TransitionInProgressError("A message is already being processed", session_id=session_id)

        async with lock:
            language = language or settings.DEFAULT_LANGUAGE
            store = self.store_factory.for_identity(identity)
            await self._require_session(store, session_id)

            snapshot = await store.load_snapshot(session_id)
            profile = await self._load_profile(store)
            history = await store.list_messages(session_id)
            executor = self.executor_for(session_id)

            if action is not None:
                event, user_text = self.flow_engine.classify_action(action, payload)
            else:
                event, user_text = self.flow_engine.classify_user_input(content, snapshot.state), content

            request = ConversationRequest(
                session_id=session_id,
                state=snapshot.state,
                profile=profile,
                diagnostic_data=dict(snapshot.diagnostic_data),
                language=language,
                history=history,
                scenario=snapshot.scenario,
                content=content,
                action=action,
                payload=payload or {},
                on_token=on_token,
                token=identity.token
            )

            refused = self.flow_engine.is_refused(user_text)
            if not refused:
                if not self.flow_engine.can_transition(snapshot.state, event):
                    raise FlowError(
                        f"{event.value} is not valid in {snapshot.state.value}",
                        current_state=snapshot.state.value,
                        details={"event": event.value}
                    )
                if self.flow_engine.is_metered(snapshot.state, event, snapshot.scenario):
                    await self._charge(identity)

            persisted: List[Message] = []
            if user_text:
                persisted.append(await store.append_message(self._user_message(session_id, user_text, snapshot)))

            if refused:
                # Never leaves the process, whatever the executor mode
                result = await self.local.handle(request)
            else:
                result = await executor.dispatch(request)

            persisted.append(await self._commit(store, snapshot, result))
            logger.info(
                f"Session {session_id[:8]}: {snapshot.state.value} -> {result.next_state.value} "
                f"({executor.mode.value})"
            )

            return TurnResult(
                session_id=session_id,
                state=result.next_state,
                messages=persisted,
                mode=executor.mode,
                refused=result.refused,
                credits=await self._balance(identity)
            )

    # ===========================================
    # Documents
    # ===========================================

    async def analyze_document(
        self,
        identity: Identity,
        session_id: str,
        name: str,
        url: str,
        language: Optional[str] = None
    ) -> TurnResult:
        """
        Metered document extraction. Always runs locally; state unchanged.

        Raises:
            GPTServiceError: Analysis failed, nothing persisted
        """
        lock = self._lock_for(session_id)
        if lock.locked():
            raise TransitionInProgressError("A message is already being processed", session_id=session_id)

        async with lock:
            language = language or settings.DEFAULT_LANGUAGE
            store = self.store_factory.for_identity(identity)
            await self._require_session(store, session_id)

            snapshot = await store.load_snapshot(session_id)
            profile = await self._load_profile(store)
            await self._charge(identity)

            analysis = await self.local.analyze_document(
                ConversationRequest(
                    session_id=session_id,
                    state=snapshot.state,
                    profile=profile,
                    diagnostic_data=dict(snapshot.diagnostic_data),
                    language=language,
                    scenario=snapshot.scenario
                ),
                name,
                url
            )
            await store.add_document(analysis.record)
            assistant = await self._commit(store, snapshot, analysis.result)

            return TurnResult(
                session_id=session_id,
                state=snapshot.state,
                messages=[assistant],
                mode=self.executor_for(session_id).mode,
                credits=await self._balance(identity)
            )

    # ===========================================
    # Credits / profile
    # ===========================================

    async def get_credits(self, identity: Identity) -> Dict[str, Any]:
        if not identity.durable:
            return {"metered": False, "balance": None}
        return {"metered": True, "balance": await self.credit_service.get_balance(identity.user_id)}

    async def grant_credits(self, user_id: str, amount: int) -> int:
        return await self.credit_service.grant(user_id, amount)

    async def get_profile(self, identity: Identity) -> Dict[str, Any]:
        store = self.store_factory.for_identity(identity)
        profile = await self._load_profile(store)
        documents = await store.list_documents()
        return {
            "profile": profile.model_dump(mode="json"),
            "documents": [d.model_dump(mode="json") for d in documents],
            "credits": await self._balance(identity),
        }

    # ===========================================
    # Introspection
    # ===========================================

    async def get_session_info(self, identity: Identity, session_id: str) -> Dict[str, Any]:
        store = self.store_factory.for_identity(identity)
        session = await self._require_session(store, session_id)
        snapshot = await store.load_snapshot(session_id)
        messages = await store.list_messages(session_id)
        executor = self._executors.get(session_id)

        return {
            "session_id": session.id,
            "title": session.title,
            "state": snapshot.state.value,
            "diagnostic_data": snapshot.diagnostic_data,
            "scenario": snapshot.scenario.model_dump() if snapshot.scenario else None,
            "message_count": len(messages),
            "mode": executor.mode.value if executor else ExecutionMode.CHECKING.value,
            "demotion_reason": executor.demotion_reason if executor else None,
            "durable": store.durable,
            "valid_events": [t.event.value for t in self.flow_engine.get_valid_transitions(snapshot.state)],
        }

    async def health_check(self) -> Dict[str, Any]:
        """Check health of the chat service and its components"""
        health_status: Dict[str, Any] = {
            "chat_service": "healthy",
            "flow_engine": "healthy",
            "services": {},
            "overall": "healthy",
        }

        issues = self.flow_engine.validate_fsm()
        if issues:
            health_status["flow_engine"] = f"issues: {len(issues)}"
            health_status["overall"] = "warning"

        for name, service in (("redis", self.redis_service), ("gpt", self.gpt_service),
                              ("orchestrator", self.orchestrator_client)):
            if service is None:
                health_status["services"][name] = {"healthy": False, "status": "not_configured"}
                continue
            try:
                health_status["services"][name] = await service.health_check()
            except Exception as e:
                health_status["services"][name] = {"healthy": False, "status": "error", "error": str(e)}

        if not health_status["services"]["redis"].get("healthy"):
            health_status["overall"] = "degraded"

        health_status["summary"] = {
            "active_executors": len(self._executors),
            "modes": sorted({e.mode.value for e in self._executors.values()}),
        }
        return health_status
