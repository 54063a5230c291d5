"""
Exception hierarchy for the SideQuest session client.

This module defines structured exceptions with error codes, context information,
and recovery suggestions so callers can decide how to present or retry a failure.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the SideQuest session client."""

    # Authentication Errors (1000-1099)
    AUTH_NOT_LOGGED_IN = "AUTH_1001"
    AUTH_REFRESH_TOKEN_MISSING = "AUTH_1002"
    AUTH_REFRESH_FAILED = "AUTH_1003"
    AUTH_REJECTED = "AUTH_1004"
    AUTH_LOGIN_CODE_EXPIRED = "AUTH_1005"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"

    # Protocol Errors (3000-3099)
    PROTOCOL_HTTP_ERROR = "PROTOCOL_3001"
    PROTOCOL_ALREADY_EXISTS = "PROTOCOL_3002"

    # Response Data Errors (4000-4099)
    DATA_EMPTY_RESPONSE = "DATA_4001"
    DATA_INVALID_RESPONSE = "DATA_4002"
    DATA_NOT_CONFIRMED = "DATA_4003"

    # Consistency Errors (5000-5099)
    CONSISTENCY_USER_MISMATCH = "CONSISTENCY_5001"

    # State Errors (6000-6099)
    STATE_NO_LOGIN_IN_PROGRESS = "STATE_6001"

    # Synchronization Errors (7000-7099)
    SYNC_ACHIEVEMENTS_FAILED = "SYNC_7001"

    # Storage and Configuration Errors (8000-8099)
    STORAGE_WRITE_FAILED = "STORAGE_8001"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8002"
    CONFIG_INVALID_VALUE = "CONFIG_8003"
    CONFIG_DATA_DIR_NOT_FOUND = "CONFIG_8004"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"
    CONTACT_ADMIN = "contact_admin"
    IGNORE = "ignore"


class SideQuestError(Exception):
    """
    Base exception class for all SideQuest session client errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


class TransportError(SideQuestError):
    """Network unreachable, DNS failure or timeout. Always retryable by the caller."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF],
            **kwargs
        )


class ProtocolError(SideQuestError):
    """Non-2xx HTTP response that is not an authentication failure."""

    def __init__(self, message: str, http_code: int, error_code: ErrorCode = ErrorCode.PROTOCOL_HTTP_ERROR, **kwargs):
        context = kwargs.pop('context', {})
        context['http_code'] = http_code
        self.http_code = http_code

        super().__init__(
            message=message,
            error_code=error_code,
            severity=kwargs.pop('severity', ErrorSeverity.MEDIUM),
            recovery_actions=kwargs.pop('recovery_actions', [RecoveryAction.RETRY]),
            context=context,
            **kwargs
        )


class AuthError(SideQuestError):
    """Authentication failures, either reported by the server (401/403) or detected locally."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.AUTH_NOT_LOGGED_IN,
        http_code: Optional[int] = None,
        **kwargs
    ):
        context = kwargs.pop('context', {})
        if http_code is not None:
            context['http_code'] = http_code
        self.http_code = http_code

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            context=context,
            **kwargs
        )


class LoginCodeExpiredError(AuthError):
    """The short code login request expired before the user completed it."""

    def __init__(self, message: str = "Device code has expired", **kwargs):
        super().__init__(message, error_code=ErrorCode.AUTH_LOGIN_CODE_EXPIRED, **kwargs)


class DataError(SideQuestError):
    """A response body was empty or malformed where a value was required."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.DATA_INVALID_RESPONSE, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY, RecoveryAction.CONTACT_ADMIN],
            **kwargs
        )


class ConsistencyError(SideQuestError):
    """Server data contradicts the locally held identity."""

    def __init__(self, message: str, expected_user_id: Optional[int] = None, actual_user_id: Optional[int] = None, **kwargs):
        context = kwargs.pop('context', {})
        context['expected_user_id'] = expected_user_id
        context['actual_user_id'] = actual_user_id

        super().__init__(
            message=message,
            error_code=ErrorCode.CONSISTENCY_USER_MISMATCH,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            context=context,
            **kwargs
        )


class AlreadyExistsError(SideQuestError):
    """The resource being created already exists on the server (HTTP 409)."""

    def __init__(self, message: str, http_code: int = 409, **kwargs):
        context = kwargs.pop('context', {})
        context['http_code'] = http_code
        self.http_code = http_code

        super().__init__(
            message=message,
            error_code=ErrorCode.PROTOCOL_ALREADY_EXISTS,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.IGNORE],
            context=context,
            **kwargs
        )


class InvalidStateError(SideQuestError):
    """An operation was invoked outside of its required precondition."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.STATE_NO_LOGIN_IN_PROGRESS, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class AchievementSyncError(SideQuestError):
    """
    The achievement cache refresh that follows a login or profile refresh failed.

    The primary operation has already been committed when this is raised;
    ``user`` carries its result.
    """

    def __init__(self, message: str, user: Any = None, **kwargs):
        self.user = user

        super().__init__(
            message=message,
            error_code=ErrorCode.SYNC_ACHIEVEMENTS_FAILED,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.RETRY],
            **kwargs
        )


class StorageError(SideQuestError):
    """The session snapshot could not be written to disk."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if path:
            context['path'] = path

        super().__init__(
            message=message,
            error_code=ErrorCode.STORAGE_WRITE_FAILED,
            severity=ErrorSeverity.CRITICAL,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


class ConfigurationError(SideQuestError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )
