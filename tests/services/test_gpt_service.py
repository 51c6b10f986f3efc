# tests/services/test_gpt_service.py
"""
Unit tests for the GPT Service.

Uses mock-first approach to test without making real API calls.
"""
import os
import pytest
from unittest.mock import Mock, AsyncMock, patch
from openai.types.chat import ChatCompletion, ChatCompletionMessage
from openai.types.chat.chat_completion import Choice
from openai.types.chat.chat_completion import CompletionUsage

from creditwise.services.gpt_service import GPTService, GPTConfig
from creditwise.core.exceptions import GPTServiceError, ConfigurationError, ValidationError


@pytest.fixture
def mock_config():
    """Create a test configuration"""
    return GPTConfig(
        api_key="test-api-key",
        model="gpt-4o-mini",
        temperature=0.7,
        timeout=30
    )


def completion(content):
    return ChatCompletion(
        id="test-id",
        object="chat.completion",
        created=1234567890,
        model="gpt-4o-mini",
        choices=[Choice(
            index=0,
            message=ChatCompletionMessage(role="assistant", content=content),
            finish_reason="stop"
        )],
        usage=CompletionUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30)
    )


def stream_of(*deltas):
    """Async iterator of chunk-shaped mocks, as returned with stream=True"""
    async def chunks():
        for delta in deltas:
            chunk = Mock()
            chunk.choices = [Mock(delta=Mock(content=delta))]
            yield chunk
    return chunks()


@pytest.fixture
def mock_openai_client():
    """Create a mock OpenAI client"""
    client = Mock()
    client.chat = Mock()
    client.chat.completions = Mock()
    client.chat.completions.create = AsyncMock(return_value=completion("  Test response  "))
    return client


@pytest.fixture
async def gpt_service(mock_config, mock_openai_client):
    """Create a GPT service with mocked client"""
    service = GPTService(mock_config)

    with patch.object(service, '_initialize_client', return_value=mock_openai_client):
        await service.initialize()

    return service


class TestGPTService:
    """Test GPT Service functionality"""

    async def test_initialization(self, mock_config):
        service = GPTService(mock_config)

        assert service.config == mock_config
        assert not service.is_initialized

        with patch.object(service, '_initialize_client', return_value=Mock()):
            await service.initialize()

        assert service.is_initialized

    async def test_missing_api_key(self):
        service = GPTService(GPTConfig(api_key=None))

        with pytest.raises(ConfigurationError) as exc_info:
            await service.initialize()

        assert "API key is required" in str(exc_info.value)

    async def test_invalid_temperature(self):
        service = GPTService(GPTConfig(api_key="test", temperature=3.0))

        with pytest.raises(ConfigurationError) as exc_info:
            await service.initialize()

        assert "Temperature must be between" in str(exc_info.value)

    async def test_complete_success(self, gpt_service):
        result = await gpt_service.complete("Test prompt")

        assert result == "Test response"

        call_args = gpt_service.client.chat.completions.create.call_args
        assert call_args[1]['model'] == 'gpt-4o-mini'
        assert call_args[1]['messages'][0]['content'] == 'Test prompt'
        assert call_args[1]['temperature'] == 0.7
        assert 'max_tokens' not in call_args[1]

    async def test_complete_with_system_prompt(self, gpt_service):
        await gpt_service.complete("User prompt", system_prompt="System instructions")

        messages = gpt_service.client.chat.completions.create.call_args[1]['messages']

        assert [m['role'] for m in messages] == ['system', 'user']
        assert messages[0]['content'] == 'System instructions'

    async def test_complete_empty_prompt(self, gpt_service):
        with pytest.raises(ValidationError) as exc_info:
            await gpt_service.complete("")

        assert "Prompt cannot be empty" in str(exc_info.value)

    async def test_chat_passes_transcript(self, gpt_service):
        transcript = [
            {"role": "system", "content": "Ты финансовый советник"},
            {"role": "user", "content": "Привет"},
            {"role": "assistant", "content": "Здравствуйте"},
            {"role": "user", "content": "Как погасить долг?"},
        ]
        await gpt_service.chat(transcript, max_tokens=200)

        call_args = gpt_service.client.chat.completions.create.call_args[1]
        assert call_args['messages'] == transcript
        assert call_args['max_tokens'] == 200

    async def test_chat_empty_messages(self, gpt_service):
        with pytest.raises(ValidationError):
            await gpt_service.chat([])

    async def test_empty_completion(self, gpt_service):
        gpt_service.client.chat.completions.create.return_value = completion(None)

        with pytest.raises(GPTServiceError) as exc_info:
            await gpt_service.complete("Test prompt")

        assert "Empty completion" in str(exc_info.value)

    async def test_complete_api_error(self, gpt_service):
        gpt_service.client.chat.completions.create.side_effect = Exception("API Error")

        with pytest.raises(GPTServiceError) as exc_info:
            await gpt_service.complete("Test prompt")

        assert "Failed to generate completion" in str(exc_info.value)
        assert exc_info.value.original_error is not None
        assert gpt_service.get_metrics()['errors'] == 1

    async def test_stream_chat_yields_deltas(self, gpt_service):
        gpt_service.client.chat.completions.create.return_value = stream_of("Со", None, "ставьте ", "бюджет")

        tokens = [t async for t in gpt_service.stream_chat([{"role": "user", "content": "Совет?"}])]

        assert tokens == ["Со", "ставьте ", "бюджет"]
        assert gpt_service.client.chat.completions.create.call_args[1]['stream'] is True

    async def test_stream_chat_failure(self, gpt_service):
        gpt_service.client.chat.completions.create.side_effect = Exception("connection reset")

        with pytest.raises(GPTServiceError) as exc_info:
            async for _ in gpt_service.stream_chat([{"role": "user", "content": "Совет?"}]):
                pass

        assert exc_info.value.details['operation'] == 'stream_chat'

    async def test_health_check_healthy(self, gpt_service):
        health = await gpt_service.health_check()

        assert health['healthy'] is True
        assert health['status'] == 'connected'
        assert 'response_time_ms' in health['details']
        assert health['details']['model'] == 'gpt-4o-mini'

    async def test_health_check_unhealthy(self, gpt_service):
        gpt_service.client.chat.completions.create.side_effect = Exception("Connection error")

        health = await gpt_service.health_check()

        assert health['healthy'] is False
        assert health['status'] == 'error'
        assert 'error' in health['details']

    async def test_get_metrics(self, gpt_service):
        metrics = gpt_service.get_metrics()

        assert metrics['service_name'] == 'GPTService'
        assert metrics['initialized'] is True
        assert metrics['model'] == 'gpt-4o-mini'
        assert metrics['temperature'] == 0.7
        assert metrics['timeout'] == 30

    async def test_shutdown(self, gpt_service):
        await gpt_service.shutdown()
        assert not gpt_service.is_initialized


# Integration tests (optional, skipped by default)
@pytest.mark.integration
class TestGPTServiceIntegration:
    """Integration tests that make real API calls"""

    @pytest.mark.skipif(
        not os.getenv("RUN_INTEGRATION_TESTS"),
        reason="Integration tests disabled"
    )
    async def test_real_completion(self):
        service = GPTService()

        result = await service.complete("Say hello in one word", temperature=0, max_tokens=5)

        assert len(result) > 0
        assert isinstance(result, str)
