# creditwise/core/service_base.py
"""
Base service class shared by the GPT, Redis and HTTP-backed services.

Subclasses get lazy initialization, health checks, metrics and graceful
shutdown; they only implement how their client is built and probed.
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, TypeVar, Generic
import logging
from creditwise.core.exceptions import ServiceError, ConfigurationError

ConfigType = TypeVar('ConfigType')


class BaseService(ABC, Generic[ConfigType]):
    """
    Abstract base class for all services.

    Provides:
    - Lazy initialization pattern
    - Consistent error wrapping
    - Health check interface
    - Resource cleanup
    """

    def __init__(
        self,
        config: Optional[ConfigType] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.config = config
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._initialized = False
        self._client = None

        self.service_name = self.__class__.__name__
        self._call_count = 0
        self._error_count = 0

    @abstractmethod
    async def _initialize_client(self) -> Any:
        """
        Create the underlying client/connection.

        Raises:
            ConfigurationError: If configuration is invalid
            ServiceError: If initialization fails
        """

    async def initialize(self) -> None:
        """Initialize the service. Idempotent."""
        if self._initialized:
            return

        try:
            self.logger.info(f"Initializing {self.service_name}...")
            self._validate_config()
            self._client = await self._initialize_client()
            self._initialized = True
            self.logger.info(f"{self.service_name} initialized successfully")

        except ConfigurationError:
            raise
        except Exception as e:
            error_msg = f"Failed to initialize {self.service_name}"
            self.logger.error(error_msg, exc_info=True)
            raise ServiceError(
                message=error_msg,
                service_name=self.service_name,
                operation="initialize",
                details={'original_error': str(e), 'error_type': type(e).__name__}
            )

    def _validate_config(self) -> None:
        """
        Validate service configuration.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.config is None:
            self.logger.debug(f"No configuration provided for {self.service_name}")

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check on the service.

        Returns:
            Dict with at least ``healthy`` (bool) and ``status`` (str)
        """

    async def ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def client(self) -> Any:
        """
        Get the underlying client.

        Raises:
            ServiceError: If service is not initialized
        """
        if not self._initialized or self._client is None:
            raise ServiceError(
                message=f"{self.service_name} is not initialized. Call initialize() first.",
                service_name=self.service_name
            )
        return self._client

    def _record_call(self, failed: bool = False) -> None:
        self._call_count += 1
        if failed:
            self._error_count += 1

    async def shutdown(self) -> None:
        """Release resources. Never raises."""
        if not self._initialized:
            return

        try:
            self.logger.info(f"Shutting down {self.service_name}...")
            await self._cleanup()
            self._client = None
            self._initialized = False
            self.logger.info(f"{self.service_name} shut down successfully")
        except Exception:
            self.logger.error(f"Error during {self.service_name} shutdown", exc_info=True)

    async def _cleanup(self) -> None:
        """Service-specific cleanup logic."""

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "service_name": self.service_name,
            "initialized": self._initialized,
            "calls": self._call_count,
            "errors": self._error_count,
        }
