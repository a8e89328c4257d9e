"""Engine error kinds."""

from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes reported by the engine and its providers."""
    WORKFLOW_NOT_FOUND = "WORKFLOW_NOT_FOUND"
    WORKFLOW_INACTIVE = "WORKFLOW_INACTIVE"
    MAX_EXECUTIONS_REACHED = "MAX_EXECUTIONS_REACHED"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    WEBHOOK_ERROR = "WEBHOOK_ERROR"
    WHATSAPP_SEND_ERROR = "WHATSAPP_SEND_ERROR"
    EMAIL_SEND_ERROR = "EMAIL_SEND_ERROR"
    SMS_SEND_ERROR = "SMS_SEND_ERROR"
    INVALID_WORKFLOW = "INVALID_WORKFLOW"


class EngineError(Exception):
    """Failure raised by the workflow engine or one of its providers.

    ``recoverable`` decides propagation: a recoverable error raised by an
    action is logged and the execution moves on to the next action, anything
    else terminates the execution as failed.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.context = context or {}
        self.recoverable = recoverable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code.value,
            "context": self.context,
            "recoverable": self.recoverable,
        }

    def __repr__(self) -> str:
        return f"EngineError({self.code.value}: {self.message})"
