"""
Logging configuration for the SideQuest session client.

This module provides console and rotating-file logging with standard, detailed
and structured JSON formats, and an audit trail of session events.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from sqshared.exceptions import SideQuestError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of session events that are audited."""
    LOGIN = "login"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    ACHIEVEMENT = "achievement"


_STANDARD_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'taskName', 'getMessage', 'exc_info', 'exc_text',
    'stack_info', 'error_info', 'audit_info', 'message', 'asctime',
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'pid': os.getpid(),
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        if hasattr(record, 'error_info') and isinstance(record.error_info, SideQuestError):
            error = record.error_info
            log_entry['error'] = {
                'code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _STANDARD_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-24s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with detailed information."""
        formatted = super().format(record)

        if hasattr(record, 'error_info') and isinstance(record.error_info, SideQuestError):
            error = record.error_info
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Logger for session audit events. Never records token values.
    """

    def __init__(self, logger_name: str = "audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        user_id: Optional[int] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            user_id: SideQuest user the event concerns
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'user_id': user_id,
            'result': result,
            'context': additional_context or {}
        }
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_login(self, user_id: int, scopes: Optional[list] = None):
        self.log_event(
            event_type=AuditEventType.LOGIN,
            message=f"Short code login completed for user {user_id}",
            user_id=user_id,
            result="success",
            additional_context={'scopes': scopes or []}
        )

    def log_logout(self, user_id: Optional[int], reason: str = "requested"):
        self.log_event(
            event_type=AuditEventType.LOGOUT,
            message=f"Session logged out ({reason})",
            user_id=user_id,
            result="success",
            additional_context={'reason': reason}
        )

    def log_token_refresh(self, user_id: Optional[int], success: bool = True, failure_reason: Optional[str] = None):
        self.log_event(
            event_type=AuditEventType.TOKEN_REFRESH,
            message=f"Access token refresh {'succeeded' if success else 'failed'}",
            user_id=user_id,
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_achievement_granted(self, user_id: Optional[int], identifier: str, already_existed: bool = False):
        self.log_event(
            event_type=AuditEventType.ACHIEVEMENT,
            message=f"Achievement {identifier} granted",
            user_id=user_id,
            result="already_exists" if already_existed else "success",
            additional_context={'achievement_identifier': identifier}
        )


def _create_formatter(log_format: LogFormat) -> logging.Formatter:
    if log_format == LogFormat.JSON:
        return StructuredFormatter()
    if log_format == LogFormat.DETAILED:
        return DetailedFormatter()
    return logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _rotating_file_handler(path: str, max_file_size: int, backup_count: int) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding='utf-8'
    )


def _reset_handlers(target: logging.Logger) -> None:
    for handler in target.handlers[:]:
        target.removeHandler(handler)


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for the client.

    Audit events propagate to the root handlers. With ``audit_file`` they are
    also written there as JSON lines, whatever ``log_format`` is.

    Returns:
        The configured root and audit loggers
    """
    root_logger = logging.getLogger()
    _reset_handlers(root_logger)
    root_logger.setLevel(getattr(logging, log_level.value))

    formatter = _create_formatter(log_format)

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        file_handler = _rotating_file_handler(log_file, max_file_size, backup_count)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    audit_logger = logging.getLogger('audit')
    _reset_handlers(audit_logger)

    if audit_file:
        audit_handler = _rotating_file_handler(audit_file, max_file_size, backup_count)
        audit_handler.setFormatter(StructuredFormatter(include_extra_fields=False))
        audit_logger.addHandler(audit_handler)

    return {
        'root': root_logger,
        'audit': audit_logger,
    }


def log_structured_error(logger: logging.Logger, error: SideQuestError):
    """Log a SideQuestError so the formatters can add its code, severity and context."""
    logger.error(error.message, extra={'error_info': error})
