"""Structured error raised by the workflow engine."""
from __future__ import annotations

from enum import Enum
from typing import Any


class WorkflowErrorCode(str, Enum):
    INVALID_TRANSITION = "invalid_transition"
    MISSING_DEPENDENCY = "missing_dependency"
    VALIDATION_FAILED = "validation_failed"
    DATA_CONFLICT = "data_conflict"
    SAVE_FAILED = "save_failed"
    LOAD_FAILED = "load_failed"
    AUTOFILL_FAILED = "autofill_failed"
    PERMISSION_DENIED = "permission_denied"


class WorkflowError(RuntimeError):
    """Raised by :class:`~troflow.application.workflow.TROWorkflowEngine` operations."""

    def __init__(
        self,
        message: str,
        code: WorkflowErrorCode,
        *,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.retryable = retryable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code.value,
            "retryable": self.retryable,
            "context": self.context,
        }
