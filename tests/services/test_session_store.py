# tests/services/test_session_store.py
"""
Tests for the durable and ephemeral conversation stores.
"""

import json
import pytest
from datetime import datetime, timezone

from creditwise.core.exceptions import SessionError, StorageError
from creditwise.core.security.identity import Identity
from creditwise.models.conversation import (
    ConversationState,
    DocumentRecord,
    Message,
    MessageMetadata,
    MessageRole,
    ScenarioRun,
    SessionSnapshot,
)
from creditwise.services.session_store import (
    DurableConversationStore,
    EphemeralConversationStore,
    SessionStoreFactory,
    next_timestamp,
)

GUEST = Identity.guest("guest_store-test-0001")
USER = Identity.authenticated("user-7", token="t", display_name="Иван")


def user_message(session_id, text, created_at=None):
    kwargs = {"created_at": created_at} if created_at else {}
    return Message(
        session_id=session_id,
        role=MessageRole.USER,
        content=text,
        metadata=MessageMetadata(state=ConversationState.INTRO),
        **kwargs
    )


@pytest.fixture(params=["durable", "ephemeral"])
def store(request, redis_service):
    if request.param == "durable":
        return DurableConversationStore(redis_service, USER)
    return EphemeralConversationStore(redis_service, GUEST, ttl=600)


@pytest.mark.unit
class TestTimestamps:

    def test_later_candidate_kept(self):
        last = datetime(2026, 1, 1, tzinfo=timezone.utc)
        later = datetime(2026, 1, 2, tzinfo=timezone.utc)
        assert next_timestamp(later, last) == later

    def test_equal_or_earlier_candidate_bumped(self):
        last = datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert next_timestamp(last, last) > last
        assert next_timestamp(datetime(2025, 1, 1, tzinfo=timezone.utc), last) > last


@pytest.mark.unit
class TestStoreContract:
    """Behaviour both backends share"""

    async def test_create_and_latest(self, store):
        assert await store.latest_session() is None

        session = await store.create_session()

        assert (await store.latest_session()).id == session.id
        assert (await store.get_session(session.id)).title == "Initial Consultation"
        assert await store.get_session("other") is None

        snapshot = await store.load_snapshot(session.id)
        assert snapshot.state == ConversationState.INTRO
        assert snapshot.diagnostic_data == {}

    async def test_messages_are_ordered_and_strictly_increasing(self, store):
        session = await store.create_session()
        stamp = datetime(2026, 3, 1, tzinfo=timezone.utc)

        first = await store.append_message(user_message(session.id, "первое", stamp))
        second = await store.append_message(user_message(session.id, "второе", stamp))

        messages = await store.list_messages(session.id)
        assert [m.content for m in messages] == ["первое", "второе"]
        assert second.created_at > first.created_at
        assert messages[1].created_at == second.created_at

    async def test_snapshot_round_trip(self, store):
        session = await store.create_session()
        snapshot = SessionSnapshot(
            session_id=session.id,
            state=ConversationState.SCENARIO_RUN,
            diagnostic_data={"step_1": "a"},
            scenario=ScenarioRun(scenario_id="credit", step_index=2, answers={"goal": "Авто"})
        )

        await store.save_snapshot(snapshot)
        loaded = await store.load_snapshot(session.id)

        assert loaded.state == ConversationState.SCENARIO_RUN
        assert loaded.diagnostic_data == {"step_1": "a"}
        assert loaded.scenario == snapshot.scenario

    async def test_profile_update(self, store):
        await store.create_session()
        await store.update_profile({"has_consent": True, "jurisdiction": "Казахстан"})

        profile = await store.load_profile()
        assert profile.has_consent
        assert profile.jurisdiction == "Казахстан"
        assert profile.user_id == store.user_id

    async def test_documents_newest_first(self, store):
        await store.create_session()
        older = DocumentRecord(user_id=store.user_id, name="a.pdf", url="u1",
                               created_at=datetime(2026, 1, 1, tzinfo=timezone.utc))
        newer = DocumentRecord(user_id=store.user_id, name="b.pdf", url="u2",
                               created_at=datetime(2026, 2, 1, tzinfo=timezone.utc))

        await store.add_document(older)
        await store.add_document(newer)

        assert [d.name for d in await store.list_documents()] == ["b.pdf", "a.pdf"]


@pytest.mark.unit
class TestDurableStore:

    async def test_keys(self, redis_service, fake_redis):
        store = DurableConversationStore(redis_service, USER)
        session = await store.create_session()
        await store.load_profile()

        assert "creditwise:sessions:user-7" in fake_redis.data
        assert f"creditwise:snapshot:{session.id}" in fake_redis.data
        assert "creditwise:profile:user-7" in fake_redis.data
        assert "creditwise:sessions:user-7" not in fake_redis.expiry

    async def test_profile_created_with_display_name(self, redis_service):
        profile = await DurableConversationStore(redis_service, USER).load_profile()

        assert profile.display_name == "Иван"
        assert profile.has_consent is False

    async def test_latest_is_newest_of_many(self, redis_service):
        store = DurableConversationStore(redis_service, USER)
        await store.create_session()
        newest = await store.create_session(title="Second")

        assert (await store.latest_session()).id == newest.id

    async def test_storage_errors_propagate(self, redis_service):
        store = DurableConversationStore(redis_service, USER)
        redis_service._client = None

        with pytest.raises(StorageError):
            await store.load_profile()


@pytest.mark.unit
class TestEphemeralStore:

    async def test_single_blob_with_ttl(self, redis_service, fake_redis):
        store = EphemeralConversationStore(redis_service, GUEST, ttl=600)
        session = await store.create_session()

        key = "creditwise_guest_session:guest_store-test-0001"
        blob = json.loads(fake_redis.data[key])
        assert fake_redis.expiry[key] == 600
        assert blob["session"]["id"] == session.id
        assert blob["chatState"] == "INTRO"
        assert blob["profile"]["display_name"] == "Гость"
        assert set(blob) >= {"session", "messages", "chatState", "diagnosticData", "scenario", "profile", "documents"}

    async def test_new_session_replaces_transcript_keeps_profile(self, redis_service):
        store = EphemeralConversationStore(redis_service, GUEST)
        first = await store.create_session()
        await store.append_message(user_message(first.id, "привет"))
        await store.update_profile({"has_consent": True})

        second = await store.create_session()

        assert await store.list_messages(first.id) == []
        assert await store.list_messages(second.id) == []
        assert (await store.load_profile()).has_consent

    async def test_older_blob_without_newer_fields(self, redis_service, fake_redis):
        fake_redis.data["creditwise_guest_session:guest_store-test-0001"] = json.dumps({
            "session": {"id": "s-old", "user_id": GUEST.user_id, "title": "Old",
                        "created_at": "2025-06-01T10:00:00Z"},
            "messages": [],
            "chatState": "DIAGNOSTIC_2",
        })
        store = EphemeralConversationStore(redis_service, GUEST)

        snapshot = await store.load_snapshot("s-old")

        assert snapshot.state == ConversationState.DIAGNOSTIC_2
        assert snapshot.diagnostic_data == {}
        assert snapshot.scenario is None
        assert (await store.load_profile()).display_name == "Гость"
        assert await store.list_documents() == []

    async def test_foreign_session_rejected(self, redis_service):
        store = EphemeralConversationStore(redis_service, GUEST)
        await store.create_session()

        with pytest.raises(SessionError):
            await store.append_message(user_message("someone-else", "x"))

    async def test_clear(self, redis_service, fake_redis):
        store = EphemeralConversationStore(redis_service, GUEST)
        await store.create_session()

        await store.clear()

        assert fake_redis.data == {}
        assert await store.latest_session() is None


@pytest.mark.unit
class TestSessionStoreFactory:

    def test_selects_backend_by_identity(self, redis_service):
        factory = SessionStoreFactory(redis_service, guest_ttl=60)

        assert isinstance(factory.for_identity(USER), DurableConversationStore)
        guest_store = factory.for_identity(GUEST)
        assert isinstance(guest_store, EphemeralConversationStore)
        assert guest_store.ttl == 60
