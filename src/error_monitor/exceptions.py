"""
Custom exceptions for the Error Monitor.

Provides specific exception types for collaborator and workflow failures with
detailed error information for better debugging and error handling.
"""

from typing import Optional, Dict, Any
from loguru import logger



class ErrorMonitorError(Exception):
    """Base exception for all Error Monitor errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        logger.error(f"{self.__class__.__name__}: {message}")
        if details:
            logger.error(f"Error details: {details}")
        if cause:
            logger.error(f"Caused by: {cause}")


class ConfigurationError(ErrorMonitorError):
    """Raised when there are configuration issues."""

    def __init__(self, message: str, missing_vars: Optional[list] = None, **kwargs):
        details = kwargs.pop("details", {})
        if missing_vars:
            details["missing_environment_variables"] = missing_vars
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class AuditStoreError(ErrorMonitorError):
    """Raised when the audit log store cannot be read or updated."""

    def __init__(
        self,
        message: str,
        error_id: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if error_id:
            details["error_id"] = error_id
        if operation:
            details["operation"] = operation
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class WorkItemError(ErrorMonitorError):
    """Raised when an issue tracker operation fails."""

    def __init__(
        self,
        message: str,
        work_item_id: Optional[int] = None,
        operation: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if work_item_id is not None:
            details["work_item_id"] = work_item_id
        if operation:
            details["operation"] = operation
        if status_code is not None:
            details["status_code"] = status_code
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class SourceControlError(ErrorMonitorError):
    """Raised when there are repository access or source control issues."""

    def __init__(
        self,
        message: str,
        repository: Optional[str] = None,
        github_error: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if repository:
            details["repository"] = repository
        if github_error:
            details["github_error"] = github_error
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class NotificationError(ErrorMonitorError):
    """Raised when a chat notification cannot be delivered."""

    def __init__(
        self,
        message: str,
        channel_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if channel_id:
            details["channel_id"] = channel_id
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class FixAgentError(ErrorMonitorError):
    """Raised when the fix agent fails or reports an unsuccessful run."""

    def __init__(
        self,
        message: str,
        run_id: Optional[str] = None,
        repository: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if run_id:
            details["run_id"] = run_id
        if repository:
            details["repository"] = repository
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)


class FixAgentTimeoutError(FixAgentError):
    """Raised when a fix agent run does not finish within its time budget."""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details=details, **kwargs)


class WorkflowError(ErrorMonitorError):
    """Raised inside the fix workflow when a stage cannot continue."""

    def __init__(
        self,
        message: str,
        error_id: Optional[str] = None,
        stage: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if error_id:
            details["error_id"] = error_id
        if stage:
            details["workflow_stage"] = stage
        cause = kwargs.pop("cause", None)
        super().__init__(message, details=details, cause=cause)
