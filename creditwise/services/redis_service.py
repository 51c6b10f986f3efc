# creditwise/services/redis_service.py
"""
Redis Service for CreditWise.

Async-only wrapper around Redis with:
- JSON serialization/deserialization
- TTL support
- List operations for append-only transcripts
- An atomic decrement-if-positive script for credit balances
- Health checks

Cache-style reads and writes degrade to defaults when Redis is unavailable.
Storage callers pass ``raise_errors=True`` (or use the list/script helpers,
which always raise) so that a lost write is surfaced as ``RedisServiceError``.
"""
import os
import json
import redis.asyncio as redis
from typing import Optional, Dict, Any, List
from dataclasses import dataclass
import logging

from creditwise.core.service_base import BaseService
from creditwise.core.exceptions import RedisServiceError

logger = logging.getLogger(__name__)

# Returns the new balance, or -1 when the balance is already exhausted.
# A missing key is created with ARGV[1] first.
DECREMENT_IF_POSITIVE_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
  redis.call('SET', KEYS[1], ARGV[1])
  current = ARGV[1]
end
if tonumber(current) <= 0 then
  return -1
end
return redis.call('DECR', KEYS[1])
"""


@dataclass
class RedisConfig:
    """Configuration for Redis Service"""
    url: Optional[str] = None
    decode_responses: bool = True
    socket_timeout: float = 5.0
    max_connections: int = 10
    retry_on_timeout: bool = True
    health_check_interval: int = 30


class RedisService(BaseService[RedisConfig]):
    """
    Async Redis service for session, profile and credit storage.
    """

    def __init__(self, config: Optional[RedisConfig] = None):
        self.logger = logging.getLogger(__name__)
        self._url_source = None

        if config is None:
            config = RedisConfig(url=self._get_redis_url())

        super().__init__(config, self.logger)

    def _get_redis_url(self) -> Optional[str]:
        """Get Redis URL from environment variables, first match wins"""
        url_env_vars = [
            "REDIS_URL",
            "REDIS_DIRECT_URI",
            "REDIS_TLS_URL",
        ]

        for var in url_env_vars:
            if url := os.environ.get(var):
                self._url_source = var
                self.logger.info(f"Using Redis URL from {var}")
                return url

        return None

    def _validate_config(self) -> None:
        super()._validate_config()

        if not self.config.url:
            self.logger.warning(
                "No Redis URL found. Session storage and credits will be unavailable. "
                "Set REDIS_URL."
            )

    async def _initialize_client(self) -> Optional[redis.Redis]:
        if not self.config.url:
            self.logger.warning("Redis disabled - no URL configured")
            return None

        try:
            client = redis.from_url(
                self.config.url,
                decode_responses=self.config.decode_responses,
                socket_timeout=self.config.socket_timeout,
                max_connections=self.config.max_connections,
                retry_on_timeout=self.config.retry_on_timeout,
                health_check_interval=self.config.health_check_interval
            )

            await client.ping()
            self.logger.info("Redis connection successful")
            return client

        except Exception as e:
            self.logger.error(f"Failed to connect to Redis: {str(e)}")
            # Startup continues; storage calls will raise RedisServiceError
            self.logger.warning("Redis functionality disabled due to connection error")
            return None

    def _require_client(self, key: str, operation: str):
        if not self._client:
            raise RedisServiceError("Redis is not connected", key=key, operation=operation)
        return self._client

    @staticmethod
    def _loads(value: Any) -> Any:
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    @staticmethod
    def _dumps(value: Any) -> Any:
        if isinstance(value, (str, bytes)):
            return value
        return json.dumps(value, ensure_ascii=False)

    async def get(
        self,
        key: str,
        default: Any = None,
        deserialize_json: bool = True,
        raise_errors: bool = False
    ) -> Any:
        """
        Get a value from Redis.

        Args:
            key: The key to retrieve
            default: Default value if key doesn't exist
            deserialize_json: Whether to deserialize JSON strings
            raise_errors: Raise RedisServiceError instead of returning default

        Returns:
            The stored value or default
        """
        if not self._client:
            if raise_errors:
                self._require_client(key, "get")
            return default

        try:
            value = await self._client.get(key)
            self._record_call()
            if value is None:
                return default
            return self._loads(value) if deserialize_json else value

        except Exception as e:
            self._record_call(failed=True)
            if raise_errors:
                raise RedisServiceError(f"Redis get failed: {e}", key=key, operation="get")
            self.logger.warning(f"Redis get failed for key '{key}': {e}")
            return default

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        serialize_json: bool = True,
        raise_errors: bool = False
    ) -> bool:
        """
        Set a value in Redis.

        Args:
            key: The key to set
            value: The value to store
            ttl: Time to live in seconds
            serialize_json: Whether to serialize non-string values as JSON
            raise_errors: Raise RedisServiceError instead of returning False

        Returns:
            True if successful, False otherwise
        """
        if not self._client:
            if raise_errors:
                self._require_client(key, "set")
            return False

        try:
            if serialize_json:
                value = self._dumps(value)

            if ttl:
                await self._client.setex(key, ttl, value)
            else:
                await self._client.set(key, value)

            self._record_call()
            return True

        except Exception as e:
            self._record_call(failed=True)
            if raise_errors:
                raise RedisServiceError(f"Redis set failed: {e}", key=key, operation="set")
            self.logger.error(f"Redis set failed for key '{key}': {e}")
            return False

    async def set_if_absent(self, key: str, value: Any) -> bool:
        """
        SET NX. Returns True when the key was created by this call.

        Raises:
            RedisServiceError: If Redis is unavailable
        """
        client = self._require_client(key, "set_if_absent")
        try:
            created = await client.set(key, self._dumps(value), nx=True)
            self._record_call()
            return bool(created)
        except Exception as e:
            self._record_call(failed=True)
            raise RedisServiceError(f"Redis SET NX failed: {e}", key=key, operation="set_if_absent")

    async def delete(self, *keys: str) -> int:
        if not self._client or not keys:
            return 0

        try:
            return await self._client.delete(*keys)
        except Exception as e:
            self.logger.error(f"Redis delete failed: {e}")
            return 0

    async def incr(self, key: str, amount: int = 1) -> Optional[int]:
        """
        Increment a counter.

        Returns:
            New value or None on error
        """
        if not self._client:
            return None

        try:
            return await self._client.incrby(key, amount)
        except Exception as e:
            self.logger.error(f"Redis incr failed for key '{key}': {e}")
            return None

    async def decrement_if_positive(self, key: str, initial: int) -> int:
        """
        Atomically decrement a counter unless it is already exhausted.

        A missing key is initialized to ``initial`` inside the same script.

        Returns:
            The new value, or -1 if the counter was <= 0 (left unchanged)

        Raises:
            RedisServiceError: If Redis is unavailable or the script fails
        """
        client = self._require_client(key, "decrement_if_positive")
        try:
            result = await client.eval(DECREMENT_IF_POSITIVE_SCRIPT, 1, key, initial)
            self._record_call()
            return int(result)
        except Exception as e:
            self._record_call(failed=True)
            raise RedisServiceError(
                f"Redis decrement failed: {e}", key=key, operation="decrement_if_positive"
            )

    async def rpush(self, key: str, *values: Any) -> int:
        """
        Append values to a list, JSON-encoding non-strings.

        Raises:
            RedisServiceError: If Redis is unavailable
        """
        client = self._require_client(key, "rpush")
        try:
            length = await client.rpush(key, *[self._dumps(v) for v in values])
            self._record_call()
            return length
        except Exception as e:
            self._record_call(failed=True)
            raise RedisServiceError(f"Redis rpush failed: {e}", key=key, operation="rpush")

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> List[Any]:
        """
        Read a list slice, decoding JSON items.

        Raises:
            RedisServiceError: If Redis is unavailable
        """
        client = self._require_client(key, "lrange")
        try:
            values = await client.lrange(key, start, end)
            self._record_call()
            return [self._loads(v) for v in values]
        except Exception as e:
            self._record_call(failed=True)
            raise RedisServiceError(f"Redis lrange failed: {e}", key=key, operation="lrange")

    async def lindex(self, key: str, index: int) -> Any:
        client = self._require_client(key, "lindex")
        try:
            value = await client.lindex(key, index)
            self._record_call()
            return None if value is None else self._loads(value)
        except Exception as e:
            self._record_call(failed=True)
            raise RedisServiceError(f"Redis lindex failed: {e}", key=key, operation="lindex")

    async def health_check(self) -> Dict[str, Any]:
        if not self.config.url:
            return {
                "healthy": False,
                "status": "disabled",
                "details": {
                    "message": "Redis not configured"
                }
            }

        try:
            if not self._client:
                return {
                    "healthy": False,
                    "status": "not_connected",
                    "details": {
                        "url_source": self._url_source,
                        "error": "Client not initialized"
                    }
                }

            await self._client.ping()
            info = await self._client.info()

            return {
                "healthy": True,
                "status": "connected",
                "details": {
                    "url_source": self._url_source,
                    "redis_version": info.get("redis_version", "unknown"),
                    "connected_clients": info.get("connected_clients", 0),
                    "used_memory_human": info.get("used_memory_human", "unknown")
                }
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "details": {
                    "url_source": self._url_source,
                    "error": str(e)
                }
            }

    async def _cleanup(self) -> None:
        if self._client:
            try:
                await self._client.close()
            except Exception as e:
                self.logger.warning(f"Error closing Redis client: {e}")

    def is_connected(self) -> bool:
        """Check if Redis is connected and available"""
        return self._client is not None


async def create_redis_service(url: Optional[str] = None, **kwargs) -> RedisService:
    """
    Create and initialize a Redis service instance.

    Args:
        url: Redis URL (uses env vars if not provided)
        **kwargs: Additional config parameters
    """
    config = RedisConfig(url=url, **kwargs) if url else None
    service = RedisService(config)
    await service.initialize()
    return service
