# tests/conftest.py
"""
Shared fixtures for CreditWise tests.

Provides an in-memory Redis double, a mocked GPT service, identities and a
fully wired ChatService running in local mode.
"""

import json
import pytest
from unittest.mock import Mock, AsyncMock
from typing import Any, Dict, List, Optional

from creditwise.core.chat_service import ChatService
from creditwise.core.flow_engine import FlowEngine
from creditwise.core.flow_handlers import FlowHandlers
from creditwise.core.prompt_manager import PromptManager
from creditwise.core.security.identity import Identity
from creditwise.agents.advisor_agent import AdvisorAgent
from creditwise.models.conversation import Profile
from creditwise.services.content_guard import ContentGuard
from creditwise.services.credit_service import CreditService
from creditwise.services.redis_service import RedisService, RedisConfig


MOCK_SESSION_ID = "test-session-123"
GUEST_ID = "guest_test-1234abcd"
USER_ID = "user-42"

SUMMARY_JSON = json.dumps({
    "summary": "Долговая нагрузка высокая, но управляемая.",
    "risks": ["Просрочки", "Рост ставки", "Коллекторы"],
    "recommendations": ["Составить бюджет", "Рефинансировать", "Вести учёт"],
}, ensure_ascii=False)

DOCUMENT_JSON = json.dumps({
    "document_type": "loan_agreement",
    "extracted_entities": {"amount": "300000", "rate": "18%"},
    "summary": "Кредитный договор на 300 000 под 18%.",
}, ensure_ascii=False)

STREAM_TOKENS = ["Рекомендую ", "начать ", "с бюджета."]


class FakeRedis:
    """
    In-memory stand-in for redis.asyncio.Redis (decode_responses=True).

    Covers the commands RedisService issues; expiry is recorded, not enforced.
    """

    def __init__(self):
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, int] = {}
        self.closed = False

    async def ping(self) -> bool:
        return True

    async def info(self) -> Dict[str, Any]:
        return {"redis_version": "7.2.0", "connected_clients": 1, "used_memory_human": "1M"}

    async def close(self) -> None:
        self.closed = True

    async def get(self, key: str) -> Optional[str]:
        value = self.data.get(key)
        return value if isinstance(value, str) else None

    async def set(self, key: str, value: Any, nx: bool = False, ex: Optional[int] = None):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        if ex:
            self.expiry[key] = ex
        else:
            self.expiry.pop(key, None)
        return True

    async def setex(self, key: str, ttl: int, value: Any) -> bool:
        self.data[key] = str(value)
        self.expiry[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.expiry.pop(key, None)
                removed += 1
        return removed

    async def incrby(self, key: str, amount: int) -> int:
        value = int(self.data.get(key, 0)) + amount
        self.data[key] = str(value)
        return value

    async def eval(self, script: str, numkeys: int, *args: Any) -> int:
        # Only the decrement-if-positive script is ever evaluated
        key, initial = args[0], args[1]
        if key not in self.data:
            self.data[key] = str(initial)
        current = int(self.data[key])
        if current <= 0:
            return -1
        self.data[key] = str(current - 1)
        return current - 1

    async def rpush(self, key: str, *values: Any) -> int:
        items: List[str] = self.data.setdefault(key, [])
        items.extend(str(v) for v in values)
        return len(items)

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        items = self.data.get(key, [])
        stop = None if end == -1 else end + 1
        return list(items[start:stop])

    async def lindex(self, key: str, index: int) -> Optional[str]:
        items = self.data.get(key, [])
        try:
            return items[index]
        except IndexError:
            return None


def connected_redis_service(client: Any) -> RedisService:
    """RedisService wired to ``client`` without going through redis.from_url"""
    service = RedisService(RedisConfig(url="redis://fake:6379/0"))
    service._client = client
    service._initialized = True
    return service


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_service(fake_redis):
    return connected_redis_service(fake_redis)


@pytest.fixture
def mock_gpt_service():
    """Mock GPTService: JSON analyses, a document extraction and a token stream"""
    mock = AsyncMock()
    mock.complete.return_value = SUMMARY_JSON
    mock.chat.return_value = DOCUMENT_JSON

    def stream_side_effect(messages, **kwargs):
        async def tokens():
            for token in STREAM_TOKENS:
                yield token
        return tokens()

    mock.stream_chat = Mock(side_effect=stream_side_effect)
    mock.health_check.return_value = {"healthy": True, "status": "connected"}
    return mock


@pytest.fixture
def prompt_manager():
    manager = PromptManager()
    manager.load_prompts()
    return manager


@pytest.fixture
def content_guard():
    return ContentGuard(prohibited_phrases=["fake income", "подделать"])


@pytest.fixture
def flow_handlers(prompt_manager, mock_gpt_service):
    return FlowHandlers(
        advisor_agent=AdvisorAgent(prompt_manager=prompt_manager, gpt_service=mock_gpt_service),
        prompt_manager=prompt_manager
    )


@pytest.fixture
def flow_engine(flow_handlers, content_guard):
    return FlowEngine(flow_handlers, content_guard=content_guard)


@pytest.fixture
def sample_profile():
    return Profile(user_id=USER_ID, display_name="Анна", jurisdiction="Russia", has_consent=True)


@pytest.fixture
def guest_identity():
    return Identity.guest(GUEST_ID)


@pytest.fixture
def user_identity():
    return Identity.authenticated(USER_ID, token="test-token", display_name="Анна")


@pytest.fixture
def chat_service(redis_service, mock_gpt_service, flow_engine, content_guard, prompt_manager):
    """ChatService in local mode on the in-memory Redis"""
    return ChatService(
        redis_service=redis_service,
        gpt_service=mock_gpt_service,
        content_guard=content_guard,
        credit_service=CreditService(redis_service, starting_credits=3),
        flow_engine=flow_engine,
        prompt_manager=prompt_manager
    )
