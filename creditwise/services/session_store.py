# creditwise/services/session_store.py
"""
Session Store for CreditWise.

One interface, two backends selected by the caller's Identity:

- DurableConversationStore (authenticated users): Redis keys without TTL.
  Sessions, messages (append-only list, oldest first), the per-session
  SessionSnapshot side table, the profile and document records each live
  under their own key.
- EphemeralConversationStore (guests): a single JSON blob per guest with a
  TTL, rewritten as a whole on every mutation. Readers use presence checks
  so older blobs without newer fields still load.

The two backends never touch each other's keys.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from creditwise.core.config import settings
from creditwise.core.exceptions import SessionError
from creditwise.core.security.identity import Identity
from creditwise.models.conversation import (
    ChatSession,
    ConversationState,
    DocumentRecord,
    Message,
    Profile,
    ScenarioRun,
    SessionSnapshot,
    utcnow,
)
from creditwise.services.redis_service import RedisService

logger = logging.getLogger(__name__)

DURABLE_PREFIX = "creditwise"
GUEST_SESSION_KEY = "creditwise_guest_session"
GUEST_DISPLAY_NAME = "Гость"
DEFAULT_SESSION_TITLE = "Initial Consultation"

TIMESTAMP_STEP = timedelta(microseconds=1)


def next_timestamp(candidate: datetime, last: Optional[datetime]) -> datetime:
    """Keep message timestamps strictly increasing within a session"""
    if last is not None and candidate <= last:
        return last + TIMESTAMP_STEP
    return candidate


class ConversationStore(ABC):
    """Storage operations the chat service needs, per identity"""

    durable: bool = False

    def __init__(self, redis_service: RedisService, identity: Identity):
        self.redis = redis_service
        self.identity = identity

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    @abstractmethod
    async def latest_session(self) -> Optional[ChatSession]:
        """Most recently created session, or None"""

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        """Session owned by the identity, or None"""

    @abstractmethod
    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        """Create a session with an INTRO snapshot and make it the latest"""

    @abstractmethod
    async def list_messages(self, session_id: str) -> List[Message]:
        """Transcript, oldest first"""

    @abstractmethod
    async def append_message(self, message: Message) -> Message:
        """Append one message, returning it with its final timestamp"""

    @abstractmethod
    async def load_snapshot(self, session_id: str) -> SessionSnapshot:
        """Snapshot for the session, INTRO if none was saved"""

    @abstractmethod
    async def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        """Replace the snapshot for its session"""

    @abstractmethod
    async def load_profile(self) -> Profile:
        """Profile for the identity, created with defaults if missing"""

    @abstractmethod
    async def save_profile(self, profile: Profile) -> None:
        """Replace the stored profile"""

    @abstractmethod
    async def add_document(self, record: DocumentRecord) -> None:
        """Store a document analysis record"""

    @abstractmethod
    async def list_documents(self) -> List[DocumentRecord]:
        """Document records, newest first"""

    async def update_profile(self, updates: Dict[str, Any]) -> Profile:
        profile = await self.load_profile()
        if not updates:
            return profile
        updated = profile.model_copy(update=updates)
        await self.save_profile(updated)
        return updated

    async def clear(self) -> None:
        """Remove everything this backend holds for the identity"""


class DurableConversationStore(ConversationStore):
    """Redis-backed store without expiry, for authenticated users"""

    durable = True

    def _key(self, kind: str, ident: str) -> str:
        return f"{DURABLE_PREFIX}:{kind}:{ident}"

    async def latest_session(self) -> Optional[ChatSession]:
        sessions = await self.redis.lrange(self._key("sessions", self.user_id))
        if not sessions:
            return None
        parsed = [ChatSession.model_validate(s) for s in sessions]
        return max(parsed, key=lambda s: s.created_at)

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        for item in await self.redis.lrange(self._key("sessions", self.user_id)):
            session = ChatSession.model_validate(item)
            if session.id == session_id:
                return session
        return None

    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        latest = await self.latest_session()
        session = ChatSession(user_id=self.user_id, title=title)
        if latest is not None:
            session.created_at = next_timestamp(session.created_at, latest.created_at)

        await self.redis.rpush(self._key("sessions", self.user_id), session.model_dump(mode="json"))
        await self.save_snapshot(SessionSnapshot(session_id=session.id))
        logger.info(f"Created session {session.id[:8]} for user {self.user_id}")
        return session

    async def list_messages(self, session_id: str) -> List[Message]:
        items = await self.redis.lrange(self._key("messages", session_id))
        return [Message.model_validate(item) for item in items]

    async def append_message(self, message: Message) -> Message:
        key = self._key("messages", message.session_id)
        last = await self.redis.lindex(key, -1)
        last_created = Message.model_validate(last).created_at if last else None
        message = message.model_copy(update={"created_at": next_timestamp(message.created_at, last_created)})
        await self.redis.rpush(key, message.model_dump(mode="json"))
        return message

    async def load_snapshot(self, session_id: str) -> SessionSnapshot:
        data = await self.redis.get(self._key("snapshot", session_id), raise_errors=True)
        if not data:
            return SessionSnapshot(session_id=session_id)
        return SessionSnapshot.model_validate(data)

    async def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        snapshot = snapshot.model_copy(update={"updated_at": utcnow()})
        await self.redis.set(
            self._key("snapshot", snapshot.session_id),
            snapshot.model_dump(mode="json"),
            raise_errors=True
        )

    async def load_profile(self) -> Profile:
        data = await self.redis.get(self._key("profile", self.user_id), raise_errors=True)
        if data:
            return Profile.model_validate(data)

        profile = Profile(
            user_id=self.user_id,
            display_name=self.identity.display_name or "User",
            has_consent=False
        )
        await self.save_profile(profile)
        logger.info(f"Created profile for user {self.user_id}")
        return profile

    async def save_profile(self, profile: Profile) -> None:
        await self.redis.set(
            self._key("profile", self.user_id),
            profile.model_dump(mode="json"),
            raise_errors=True
        )

    async def add_document(self, record: DocumentRecord) -> None:
        await self.redis.rpush(self._key("documents", self.user_id), record.model_dump(mode="json"))

    async def list_documents(self) -> List[DocumentRecord]:
        items = await self.redis.lrange(self._key("documents", self.user_id))
        return sorted(
            (DocumentRecord.model_validate(item) for item in items),
            key=lambda d: d.created_at,
            reverse=True
        )


class EphemeralConversationStore(ConversationStore):
    """Single expiring blob per guest"""

    durable = False

    def __init__(self, redis_service: RedisService, identity: Identity, ttl: Optional[int] = None):
        super().__init__(redis_service, identity)
        self.ttl = ttl or settings.GUEST_SESSION_TTL

    @property
    def key(self) -> str:
        return f"{GUEST_SESSION_KEY}:{self.user_id}"

    async def _read(self) -> Dict[str, Any]:
        blob = await self.redis.get(self.key, raise_errors=True)
        return blob if isinstance(blob, dict) else {}

    async def _write(self, blob: Dict[str, Any]) -> None:
        await self.redis.set(self.key, blob, ttl=self.ttl, raise_errors=True)

    def _guest_profile(self) -> Profile:
        return Profile(user_id=self.user_id, display_name=GUEST_DISPLAY_NAME, has_consent=False)

    def _require_session(self, blob: Dict[str, Any], session_id: str) -> None:
        session = blob.get("session")
        if not session or session.get("id") != session_id:
            raise SessionError("Unknown guest session", session_id=session_id)

    async def latest_session(self) -> Optional[ChatSession]:
        blob = await self._read()
        if not blob.get("session"):
            return None
        return ChatSession.model_validate(blob["session"])

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        session = await self.latest_session()
        if session is None or session.id != session_id:
            return None
        return session

    async def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        blob = await self._read()
        session = ChatSession(user_id=self.user_id, title=title)
        blob.update({
            "session": session.model_dump(mode="json"),
            "messages": [],
            "chatState": ConversationState.INTRO.value,
            "diagnosticData": {},
            "scenario": None,
        })
        blob.setdefault("profile", self._guest_profile().model_dump(mode="json"))
        blob.setdefault("documents", [])
        await self._write(blob)
        logger.info(f"Created guest session {session.id[:8]} for {self.user_id}")
        return session

    async def list_messages(self, session_id: str) -> List[Message]:
        blob = await self._read()
        if (blob.get("session") or {}).get("id") != session_id:
            return []
        return [Message.model_validate(m) for m in blob.get("messages", [])]

    async def append_message(self, message: Message) -> Message:
        blob = await self._read()
        self._require_session(blob, message.session_id)
        messages = blob.setdefault("messages", [])
        last_created = Message.model_validate(messages[-1]).created_at if messages else None
        message = message.model_copy(update={"created_at": next_timestamp(message.created_at, last_created)})
        messages.append(message.model_dump(mode="json"))
        await self._write(blob)
        return message

    async def load_snapshot(self, session_id: str) -> SessionSnapshot:
        blob = await self._read()
        if (blob.get("session") or {}).get("id") != session_id:
            return SessionSnapshot(session_id=session_id)

        scenario = blob.get("scenario")
        return SessionSnapshot(
            session_id=session_id,
            state=ConversationState(blob.get("chatState") or ConversationState.INTRO.value),
            diagnostic_data=dict(blob.get("diagnosticData") or {}),
            scenario=ScenarioRun.model_validate(scenario) if scenario else None
        )

    async def save_snapshot(self, snapshot: SessionSnapshot) -> None:
        blob = await self._read()
        self._require_session(blob, snapshot.session_id)
        blob["chatState"] = snapshot.state.value
        blob["diagnosticData"] = dict(snapshot.diagnostic_data)
        blob["scenario"] = snapshot.scenario.model_dump(mode="json") if snapshot.scenario else None
        await self._write(blob)

    async def load_profile(self) -> Profile:
        blob = await self._read()
        if blob.get("profile"):
            return Profile.model_validate(blob["profile"])
        return self._guest_profile()

    async def save_profile(self, profile: Profile) -> None:
        blob = await self._read()
        blob["profile"] = profile.model_dump(mode="json")
        await self._write(blob)

    async def add_document(self, record: DocumentRecord) -> None:
        blob = await self._read()
        blob.setdefault("documents", []).append(record.model_dump(mode="json"))
        await self._write(blob)

    async def list_documents(self) -> List[DocumentRecord]:
        blob = await self._read()
        return sorted(
            (DocumentRecord.model_validate(d) for d in blob.get("documents", [])),
            key=lambda d: d.created_at,
            reverse=True
        )

    async def clear(self) -> None:
        await self.redis.delete(self.key)
        logger.info(f"Cleared guest session for {self.user_id}")


class SessionStoreFactory:
    """Chooses the backend from the identity"""

    def __init__(self, redis_service: RedisService, guest_ttl: Optional[int] = None):
        self.redis = redis_service
        self.guest_ttl = guest_ttl

    def for_identity(self, identity: Identity) -> ConversationStore:
        if identity.durable:
            return DurableConversationStore(self.redis, identity)
        return EphemeralConversationStore(self.redis, identity, ttl=self.guest_ttl)
