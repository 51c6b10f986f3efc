# tests/core/test_chat_service.py
"""
ChatService tests on the in-memory Redis double, local execution mode.

Tests cover:
- Session bootstrap for guests and authenticated users
- Guard ordering: PII blocks before anything is stored, prohibited input is refused
- Credit metering and exhaustion
- Per-session serialization and bounded per-session state
- Remote failure mid-session falls back to local without duplicates
- Documents, credits and guest cleanup
"""

import pytest
from unittest.mock import AsyncMock, Mock

from creditwise.core.chat_service import ChatService
from creditwise.core.dual_mode_executor import ExecutionMode
from creditwise.core.exceptions import (
    ContentPolicyError,
    FlowError,
    GPTServiceError,
    InsufficientCreditsError,
    OrchestratorError,
    SessionError,
    TransitionInProgressError,
    ValidationError,
)
from creditwise.models.conversation import ConversationState, MessageRole, SessionSnapshot
from creditwise.models.orchestrator_models import HealthResponse, OrchestratorResponse, RemoteOk
from creditwise.services.credit_service import CreditService

S = ConversationState


async def move_to(chat_service, identity, session_id, state):
    """Jump a stored session straight to ``state``"""
    store = chat_service.store_factory.for_identity(identity)
    await store.save_snapshot(SessionSnapshot(session_id=session_id, state=state))


@pytest.mark.unit
class TestSessionBootstrap:

    async def test_guest_init_creates_greeted_session(self, chat_service, guest_identity, fake_redis):
        view = await chat_service.init_session(guest_identity)

        assert view.state == S.INTRO
        assert view.is_guest
        assert view.guest_id == guest_identity.user_id
        assert view.credits is None
        assert view.mode == ExecutionMode.LOCAL
        assert [m.role for m in view.messages] == [MessageRole.ASSISTANT]
        assert view.messages[0].metadata.event == "chat_started"
        assert f"creditwise_guest_session:{guest_identity.user_id}" in fake_redis.data

    async def test_init_is_idempotent(self, chat_service, guest_identity):
        first = await chat_service.init_session(guest_identity)
        second = await chat_service.init_session(guest_identity)

        assert first.session.id == second.session.id
        assert len(second.messages) == 1

    async def test_user_init_uses_durable_store(self, chat_service, user_identity, fake_redis):
        view = await chat_service.init_session(user_identity)

        assert not view.is_guest
        assert view.credits == 3
        assert view.profile.display_name == "Анна"
        assert f"creditwise:sessions:{user_identity.user_id}" in fake_redis.data
        assert not any(key.startswith("creditwise_guest_session") for key in fake_redis.data)

    async def test_start_new_session(self, chat_service, user_identity):
        first = await chat_service.init_session(user_identity)
        second = await chat_service.start_new_session(user_identity)

        assert second.session.id != first.session.id
        assert second.state == S.INTRO
        assert len(second.messages) == 1

    async def test_unknown_session(self, chat_service, user_identity):
        with pytest.raises(SessionError):
            await chat_service.send_message(user_identity, "no-such-session", "Привет")

    async def test_end_guest_session_deletes_blob(self, chat_service, guest_identity, fake_redis):
        view = await chat_service.init_session(guest_identity)
        await chat_service.end_guest_session(guest_identity.user_id)

        assert f"creditwise_guest_session:{guest_identity.user_id}" not in fake_redis.data
        assert view.session.id not in chat_service._executors


@pytest.mark.unit
class TestScriptedTurns:

    async def test_full_diagnostic_as_guest(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        session_id = view.session.id

        turn = await chat_service.send_message(guest_identity, session_id, "Привет")
        assert turn.state == S.CONSENT
        turn = await chat_service.send_message(guest_identity, session_id, "Да, согласен")
        assert turn.state == S.JURISDICTION
        turn = await chat_service.send_message(guest_identity, session_id, "Russia")
        assert turn.state == S.DIAGNOSTIC_1

        for step in range(1, 8):
            turn = await chat_service.send_action(guest_identity, session_id, "diagnostic_answer",
                                                  {"answer": f"ответ {step}"})

        assert turn.state == S.SUMMARY
        info = await chat_service.get_session_info(guest_identity, session_id)
        assert info["diagnostic_data"]["step_7"] == "ответ 7"
        assert len(info["diagnostic_data"]) == 7

        profile = (await chat_service.get_profile(guest_identity))["profile"]
        assert profile["has_consent"] is True
        assert profile["jurisdiction"] == "Russia"

    async def test_decline_chip_is_not_consent(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        await chat_service.send_message(guest_identity, view.session.id, "Привет")

        turn = await chat_service.send_message(guest_identity, view.session.id, "Не согласен")

        assert turn.state == S.INTRO

    async def test_each_turn_persists_user_and_assistant(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        turn = await chat_service.send_message(guest_identity, view.session.id, "  Привет  ")

        assert [m.role for m in turn.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert turn.messages[0].content == "  Привет  "
        assert turn.messages[0].created_at < turn.messages[1].created_at
        assert turn.messages[1].metadata.state == S.CONSENT

    async def test_invalid_action_for_state(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)

        with pytest.raises(FlowError):
            await chat_service.send_action(guest_identity, view.session.id, "scenario_step", {"answer": "x"})

    async def test_unknown_action(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)

        with pytest.raises(ValidationError):
            await chat_service.send_action(guest_identity, view.session.id, "teleport")


@pytest.mark.unit
class TestContentPolicy:

    async def test_empty_message(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        with pytest.raises(ValidationError):
            await chat_service.send_message(guest_identity, view.session.id, "   ")

    async def test_pii_blocks_and_persists_nothing(self, chat_service, user_identity):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.CHAT)

        with pytest.raises(ContentPolicyError):
            await chat_service.send_message(user_identity, view.session.id, "Пишите на anna@example.com")

        info = await chat_service.get_session_info(user_identity, view.session.id)
        assert info["message_count"] == 1
        assert (await chat_service.get_credits(user_identity))["balance"] == 3

    async def test_prohibited_input_is_refused_without_charge(self, chat_service, user_identity, mock_gpt_service):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.CHAT)

        turn = await chat_service.send_message(user_identity, view.session.id, "Помогите подделать справку")

        assert turn.refused
        assert turn.state == S.CHAT
        assert turn.credits == 3
        assert [m.role for m in turn.messages] == [MessageRole.USER, MessageRole.ASSISTANT]
        assert turn.assistant.content.startswith("Я не могу помочь с этим запросом")
        mock_gpt_service.stream_chat.assert_not_called()

    async def test_refusal_keeps_diagnostic_state(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        await move_to(chat_service, guest_identity, view.session.id, S.DIAGNOSTIC_3)

        turn = await chat_service.send_message(guest_identity, view.session.id, "fake income statement please")

        assert turn.refused
        assert turn.state == S.DIAGNOSTIC_3


@pytest.mark.unit
class TestMetering:

    async def test_free_chat_streams_and_charges(self, chat_service, user_identity):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.SUMMARY)
        tokens = []

        turn = await chat_service.send_message(user_identity, view.session.id, "Что делать?", on_token=tokens.append)

        assert turn.state == S.CHAT
        assert turn.credits == 2
        assert "".join(tokens) == turn.assistant.content == "Рекомендую начать с бюджета."

    async def test_exhausted_credits(self, chat_service, user_identity):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.CHAT)
        for _ in range(3):
            await chat_service.send_message(user_identity, view.session.id, "Вопрос")

        with pytest.raises(InsufficientCreditsError):
            await chat_service.send_message(user_identity, view.session.id, "Ещё вопрос")

        info = await chat_service.get_session_info(user_identity, view.session.id)
        assert info["message_count"] == 1 + 3 * 2
        assert (await chat_service.get_credits(user_identity))["balance"] == 0

    async def test_guests_are_not_metered(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        await move_to(chat_service, guest_identity, view.session.id, S.CHAT)

        for _ in range(5):
            turn = await chat_service.send_message(guest_identity, view.session.id, "Вопрос")

        assert turn.credits is None
        assert await chat_service.get_credits(guest_identity) == {"metered": False, "balance": None}

    async def test_scripted_steps_are_free(self, chat_service, user_identity):
        view = await chat_service.init_session(user_identity)
        await chat_service.send_message(user_identity, view.session.id, "Привет")
        turn = await chat_service.send_message(user_identity, view.session.id, "да")

        assert turn.credits == 3

    async def test_grant_restores_access(self, chat_service, user_identity):
        assert await chat_service.grant_credits(user_identity.user_id, 10) == 13

    async def test_generation_failure_keeps_user_message_only(self, chat_service, user_identity, mock_gpt_service):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.CHAT)
        mock_gpt_service.stream_chat = Mock(side_effect=GPTServiceError("model down"))

        with pytest.raises(GPTServiceError):
            await chat_service.send_message(user_identity, view.session.id, "Вопрос")

        info = await chat_service.get_session_info(user_identity, view.session.id)
        assert info["message_count"] == 2
        assert info["state"] == S.CHAT.value


@pytest.mark.unit
class TestConcurrency:

    async def test_second_turn_is_rejected_while_first_runs(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)

        async with chat_service._lock_for(view.session.id):
            with pytest.raises(TransitionInProgressError):
                await chat_service.send_message(guest_identity, view.session.id, "Привет")

        turn = await chat_service.send_message(guest_identity, view.session.id, "Привет")
        assert turn.state == S.CONSENT

    async def test_replaced_sessions_are_forgotten(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        await chat_service.send_message(guest_identity, view.session.id, "Привет")

        for _ in range(3):
            view = await chat_service.start_new_session(guest_identity)
            await chat_service.send_message(guest_identity, view.session.id, "Привет")

        assert list(chat_service._executors) == [view.session.id]
        assert list(chat_service._locks) == [view.session.id]

    def test_tracked_sessions_are_bounded(self, chat_service):
        chat_service.max_tracked_sessions = 2
        for session_id in ("s-1", "s-2", "s-3"):
            chat_service.executor_for(session_id)
            chat_service._lock_for(session_id)

        assert list(chat_service._executors) == ["s-2", "s-3"]
        assert list(chat_service._locks) == ["s-2", "s-3"]

    async def test_held_lock_survives_trimming(self, chat_service):
        chat_service.max_tracked_sessions = 1
        held = chat_service._lock_for("busy")

        async with held:
            chat_service._lock_for("other")
            assert chat_service._lock_for("busy") is held


@pytest.mark.unit
class TestDocumentsAndIntrospection:

    async def test_document_analysis(self, chat_service, user_identity):
        view = await chat_service.init_session(user_identity)
        await move_to(chat_service, user_identity, view.session.id, S.CHAT)

        turn = await chat_service.analyze_document(user_identity, view.session.id, "договор.pdf",
                                                   "https://files.example/dogovor.pdf")

        assert turn.state == S.CHAT
        assert turn.credits == 2
        assert "договор.pdf" in turn.assistant.content

        profile = await chat_service.get_profile(user_identity)
        assert profile["documents"][0]["document_type"] == "loan_agreement"
        assert profile["credits"] == 2

    async def test_session_info(self, chat_service, guest_identity):
        view = await chat_service.init_session(guest_identity)
        info = await chat_service.get_session_info(guest_identity, view.session.id)

        assert info["state"] == "INTRO"
        assert info["mode"] == "local"
        assert info["durable"] is False
        assert "user_input" in info["valid_events"]

    async def test_health_check(self, chat_service):
        health = await chat_service.health_check()

        assert health["services"]["redis"]["healthy"]
        assert health["services"]["orchestrator"]["status"] == "not_configured"
        assert health["overall"] == "healthy"


@pytest.mark.unit
class TestRemoteFallback:

    @pytest.fixture
    def remote_client(self):
        client = AsyncMock()
        client.configured = True
        client.health.return_value = HealthResponse(status="ok", mode="n8n")
        client.get_session.return_value = None
        client.start.return_value = RemoteOk(
            OrchestratorResponse(text="Здравствуйте!", state=S.INTRO, session_id="remote-1")
        )
        client.send_message.side_effect = OrchestratorError("Network error", code="NETWORK_ERROR")
        return client

    @pytest.fixture
    def remote_chat_service(self, redis_service, mock_gpt_service, flow_engine, content_guard,
                            prompt_manager, remote_client):
        return ChatService(
            redis_service=redis_service,
            gpt_service=mock_gpt_service,
            orchestrator_client=remote_client,
            content_guard=content_guard,
            credit_service=CreditService(redis_service, starting_credits=3),
            flow_engine=flow_engine,
            prompt_manager=prompt_manager
        )

    async def test_network_error_reprocesses_locally_once(self, remote_chat_service, guest_identity, remote_client):
        view = await remote_chat_service.init_session(guest_identity)
        assert view.mode == ExecutionMode.REMOTE

        turn = await remote_chat_service.send_message(guest_identity, view.session.id, "Привет")

        assert turn.state == S.CONSENT
        assert turn.mode == ExecutionMode.LOCAL
        remote_client.send_message.assert_awaited_once()

        store = remote_chat_service.store_factory.for_identity(guest_identity)
        messages = await store.list_messages(view.session.id)
        assert [m.role for m in messages] == [MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT]

    async def test_demoted_session_stays_local(self, remote_chat_service, guest_identity, remote_client):
        view = await remote_chat_service.init_session(guest_identity)
        await remote_chat_service.send_message(guest_identity, view.session.id, "Привет")

        turn = await remote_chat_service.send_message(guest_identity, view.session.id, "да")

        assert turn.state == S.JURISDICTION
        assert turn.mode == ExecutionMode.LOCAL
        remote_client.send_message.assert_awaited_once()
