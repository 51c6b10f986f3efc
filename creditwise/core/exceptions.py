# creditwise/core/exceptions.py
"""
Core exceptions - standardized error handling for the advisor backend.

Every error carries a human-readable message plus a details dict so the API
layer can log it and map it to a ``{error, code}`` response uniformly.
"""

from typing import Optional, Dict, Any


class CreditWiseError(Exception):
    """Base exception for all CreditWise errors"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Optional additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class FlowError(CreditWiseError):
    """Errors in flow processing and state transitions"""

    code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize flow error.

        Args:
            message: Error description
            current_state: State where error occurred
            details: Additional error context
        """
        super().__init__(message, details)
        self.current_state = current_state

        if current_state:
            self.details['current_state'] = current_state

    def __str__(self) -> str:
        base_msg = super().__str__()
        if self.current_state:
            return f"{base_msg} [State: {self.current_state}]"
        return base_msg


class TransitionFailedError(CreditWiseError):
    """A transition handler crashed; a server fault, not a client state error"""

    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.current_state = current_state

        if current_state:
            self.details['current_state'] = current_state


class ValidationError(CreditWiseError):
    """Errors in input validation and data integrity"""

    code = "INVALID_REQUEST"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.field = field
        self.value = value

        if field:
            self.details['field'] = field
        if value is not None:
            self.details['value'] = str(value)


class ContentPolicyError(CreditWiseError):
    """User input rejected by the content guard before any backend call"""

    def __init__(
        self,
        message: str,
        violation: str,
        category: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize content policy error.

        Args:
            message: Warning shown to the user
            violation: Filter that fired ("pii" or "prohibited")
            category: Concrete match category (e.g. "email")
            details: Additional context
        """
        super().__init__(message, details)
        self.violation = violation
        self.category = category

        self.details['violation'] = violation
        if category:
            self.details['category'] = category

    @property
    def code(self) -> str:
        return "PII_DETECTED" if self.violation == "pii" else "PROHIBITED_CONTENT"


class InsufficientCreditsError(CreditWiseError):
    """Paid interaction attempted with an exhausted balance"""

    code = "INSUFFICIENT_CREDITS"

    def __init__(self, message: str, user_id: Optional[str] = None, balance: int = 0):
        super().__init__(message)
        self.user_id = user_id
        self.balance = balance

        if user_id:
            self.details['user_id'] = user_id
        self.details['balance'] = balance


class ConfigurationError(CreditWiseError):
    """Errors in system configuration and initialization"""

    code = "CONFIG_ERROR"

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.component = component

        if component:
            self.details['component'] = component


class PromptError(CreditWiseError):
    """Errors in prompt management and template processing"""

    def __init__(
        self,
        message: str,
        prompt_type: Optional[str] = None,
        template_vars: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.prompt_type = prompt_type
        self.template_vars = template_vars or {}

        if prompt_type:
            self.details['prompt_type'] = prompt_type
        if template_vars:
            self.details['template_vars'] = template_vars


class SessionError(CreditWiseError):
    """Errors in session management and state handling"""

    code = "SESSION_ERROR"

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.session_id = session_id

        if session_id:
            self.details['session_id'] = session_id


class TransitionInProgressError(SessionError):
    """A second send arrived while a transition for the session is in flight"""

    code = "TRANSITION_IN_PROGRESS"


class AuthenticationError(CreditWiseError):
    """Errors in token validation and authentication"""

    code = "UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize authentication error.

        Args:
            message: Error description
            error_type: Type of failure (missing, invalid, expired)
            details: Additional security context
        """
        super().__init__(message, details)
        self.error_type = error_type

        if error_type:
            self.details['error_type'] = error_type


class ServiceError(CreditWiseError):
    """Errors in external service interactions"""

    code = "SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.service_name = service_name
        self.operation = operation

        if service_name:
            self.details['service'] = service_name
        if operation:
            self.details['operation'] = operation


class GPTServiceError(ServiceError):
    """Specific errors for GPT service interactions"""

    code = "GENERATION_FAILED"

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="GPT", operation=operation, details=details)
        self.model = model
        self.original_error = original_error

        if model:
            self.details['model'] = model
        if original_error is not None:
            self.details['original_error'] = str(original_error)


class StorageError(ServiceError):
    """A session, profile or credit store could not be read or written"""

    code = "STORAGE_ERROR"


class RedisServiceError(StorageError):
    """Specific errors for Redis service interactions"""

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Redis", operation=operation, details=details)
        self.key = key

        if key:
            self.details['key'] = key


class OrchestratorError(ServiceError):
    """Remote orchestrator call failed or returned an unusable response"""

    def __init__(
        self,
        message: str,
        code: str = "NETWORK_ERROR",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, service_name="Orchestrator", details=details)
        self.code = code
        self.status_code = status_code

        self.details['code'] = code
        if status_code is not None:
            self.details['status_code'] = status_code
