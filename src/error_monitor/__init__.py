"""
Error Monitor

Turns application errors from an audit log into bug work items and draft fix
pull requests: it parses the stack trace, finds the owning repository, opens a
ticket, runs an automated fix agent on a fresh branch and notifies the team.
"""

__version__ = "1.0.0"
__author__ = "Error Monitor Team"

from .server import ErrorMonitorServer
from .config import Config, WorkflowSettings
from .models import (
    AuditError,
    ParsedStackTrace,
    RepositoryDescriptor,
    WorkflowStatus,
    FixResult,
)
from .exceptions import (
    ErrorMonitorError,
    ConfigurationError,
    AuditStoreError,
    WorkItemError,
    SourceControlError,
    NotificationError,
    FixAgentError,
    FixAgentTimeoutError,
    WorkflowError,
)

__all__ = [
    # Core
    "ErrorMonitorServer",
    "Config",
    "WorkflowSettings",
    # Models
    "AuditError",
    "ParsedStackTrace",
    "RepositoryDescriptor",
    "WorkflowStatus",
    "FixResult",
    # Exceptions
    "ErrorMonitorError",
    "ConfigurationError",
    "AuditStoreError",
    "WorkItemError",
    "SourceControlError",
    "NotificationError",
    "FixAgentError",
    "FixAgentTimeoutError",
    "WorkflowError",
]
