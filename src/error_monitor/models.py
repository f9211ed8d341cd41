"""
Data models for the Error Monitor.

Defines structured data models for audit log errors, parsed stack traces,
repository descriptors, workflow status and fix results using dataclasses
for type safety.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Tuple, Union
from datetime import datetime
from enum import Enum

from .constants import SEVERITY


class ErrorSeverity(Enum):
    """Severity of an audit log error, ordered by urgency."""
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def urgency(self) -> int:
        """Higher is more urgent."""
        return {"critical": 4, "error": 3, "warning": 2, "info": 1}[self.value]

    @classmethod
    def parse(cls, value: Union[str, "ErrorSeverity"]) -> "ErrorSeverity":
        """Accept an enum member or its string value; anything else is rejected."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(value.strip().lower())
        raise ValueError(f"Unsupported severity: {value!r}")


def map_severity_to_priority(severity: Union[str, ErrorSeverity]) -> int:
    """Map an error severity to a work item priority (1 = highest)."""
    return SEVERITY.PRIORITY[ErrorSeverity.parse(severity).value]


def map_severity_to_label(severity: Union[str, ErrorSeverity]) -> str:
    """Map an error severity to a work item severity label."""
    return SEVERITY.LABEL[ErrorSeverity.parse(severity).value]


class Language(Enum):
    """Source language detected from a stack trace."""
    TYPESCRIPT = "typescript"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    GO = "go"
    JAVA = "java"
    CSHARP = "csharp"
    RUBY = "ruby"
    RUST = "rust"
    UNKNOWN = "unknown"


class WorkflowStage(Enum):
    """Stages of the fix workflow, in their intended order."""
    INITIALIZING = "initializing"
    PARSING_ERROR = "parsing_error"
    FINDING_REPOSITORY = "finding_repository"
    CREATING_WORK_ITEM = "creating_work_item"
    CREATING_BRANCH = "creating_branch"
    RUNNING_FIX_AGENT = "running_fix_agent"
    CREATING_PULL_REQUEST = "creating_pull_request"
    NOTIFYING_TEAM = "notifying_team"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStage.COMPLETED, WorkflowStage.FAILED)


class FixRunState(Enum):
    """State of a fix agent run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (FixRunState.COMPLETED, FixRunState.FAILED, FixRunState.CANCELLED)


@dataclass
class AuditError:
    """An error record from the audit log store."""
    id: str
    timestamp: str
    message: str
    stack_trace: str
    severity: ErrorSeverity
    source: str
    environment: str
    commit_sha: Optional[str] = None
    repository: Optional[str] = None
    processed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    # Fix information written back once a fix PR exists
    work_item_id: Optional[int] = None
    pull_request_url: Optional[str] = None
    fix_branch: Optional[str] = None
    fixed_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditError":
        """Build an error record from a stored item (camelCase or snake_case keys)."""
        return cls(
            id=str(data["id"]),
            timestamp=str(data.get("timestamp", "")),
            message=data.get("message", ""),
            stack_trace=data.get("stack_trace", data.get("stackTrace", "")) or "",
            severity=ErrorSeverity.parse(data.get("severity", "error")),
            source=data.get("source", ""),
            environment=data.get("environment", ""),
            commit_sha=data.get("commit_sha", data.get("commitSha")),
            repository=data.get("repository"),
            processed=bool(data.get("processed", False)),
            metadata=dict(data.get("metadata") or {}),
            work_item_id=_optional_int(data.get("work_item_id", data.get("workItemId"))),
            pull_request_url=data.get("pull_request_url", data.get("pullRequestUrl")),
            fix_branch=data.get("fix_branch", data.get("fixBranch")),
            fixed_at=data.get("fixed_at", data.get("fixedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "message": self.message,
            "stack_trace": self.stack_trace,
            "severity": self.severity.value,
            "source": self.source,
            "environment": self.environment,
            "commit_sha": self.commit_sha,
            "repository": self.repository,
            "processed": self.processed,
            "metadata": self.metadata,
            "work_item_id": self.work_item_id,
            "pull_request_url": self.pull_request_url,
            "fix_branch": self.fix_branch,
            "fixed_at": self.fixed_at,
        }


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class AuditErrorFilter:
    """Filter options for querying unprocessed audit log errors."""
    severities: List[ErrorSeverity] = field(default_factory=list)
    source: Optional[str] = None
    since: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, error: AuditError) -> bool:
        if self.severities and error.severity not in self.severities:
            return False
        if self.source and error.source != self.source:
            return False
        if self.since and error.timestamp < self.since:
            return False
        return True


@dataclass
class ErrorStats:
    """Aggregate counts of unprocessed errors."""
    total_unprocessed: int = 0
    by_severity: Dict[str, int] = field(default_factory=dict)
    by_source: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_unprocessed": self.total_unprocessed,
            "by_severity": self.by_severity,
            "by_source": self.by_source,
        }


@dataclass(frozen=True)
class StackFrame:
    """A single frame of a parsed stack trace."""
    file_path: str
    line_number: Optional[int] = None
    column_number: Optional[int] = None
    function_name: Optional[str] = None
    class_name: Optional[str] = None
    is_first_party: bool = True
    repository: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "line_number": self.line_number,
            "column_number": self.column_number,
            "function_name": self.function_name,
            "class_name": self.class_name,
            "is_first_party": self.is_first_party,
            "repository": self.repository,
        }


@dataclass(frozen=True)
class ParsedStackTrace:
    """Structured, language-tagged view of a raw stack trace."""
    raw: str
    frames: Tuple[StackFrame, ...]
    language: Language
    error_message: str
    error_type: Optional[str] = None

    def first_party_frames(self) -> List[StackFrame]:
        return [frame for frame in self.frames if frame.is_first_party]

    def primary_frame(self) -> Optional[StackFrame]:
        """The outermost first-party frame, if any."""
        return next((frame for frame in self.frames if frame.is_first_party), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language.value,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "frames": [frame.to_dict() for frame in self.frames],
        }


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A resolved source repository."""
    owner: str
    name: str
    url: str
    default_branch: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner": self.owner,
            "name": self.name,
            "full_name": self.full_name,
            "url": self.url,
            "default_branch": self.default_branch,
        }


@dataclass(frozen=True)
class WorkflowStatus:
    """Snapshot of a fix workflow run; each transition yields a new value."""
    stage: WorkflowStage
    progress: int
    message: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    failed_stage: Optional[WorkflowStage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "progress": self.progress,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "error": self.error,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
        }


@dataclass
class ModifiedFile:
    """Information about a file changed by the fix agent."""
    path: str
    change_type: str = "modified"  # added, modified, deleted
    lines_added: int = 0
    lines_removed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "change_type": self.change_type,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
        }


@dataclass
class FixResult:
    """Outcome of processing one audit log error."""
    success: bool
    error_id: str
    repository: str = ""
    branch: str = ""
    modified_files: List[ModifiedFile] = field(default_factory=list)
    pull_request_url: Optional[str] = None
    pull_request_number: Optional[int] = None
    work_item_id: Optional[int] = None
    fix_summary: str = ""
    fix_run_id: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    status: Optional[WorkflowStatus] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "error_id": self.error_id,
            "repository": self.repository,
            "branch": self.branch,
            "modified_files": [f.to_dict() for f in self.modified_files],
            "pull_request_url": self.pull_request_url,
            "pull_request_number": self.pull_request_number,
            "work_item_id": self.work_item_id,
            "fix_summary": self.fix_summary,
            "fix_run_id": self.fix_run_id,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.to_dict() if self.status else None,
        }


@dataclass
class CreateBugInput:
    """Input for creating a bug work item."""
    title: str
    description: str
    related_error_id: str
    repro_steps: Optional[str] = None
    system_info: Optional[str] = None
    priority: int = 2
    severity: str = "2 - High"
    tags: List[str] = field(default_factory=list)
    assigned_to: Optional[str] = None
    area_path: Optional[str] = None
    iteration_path: Optional[str] = None


@dataclass
class BugWorkItem:
    """A bug work item in the issue tracker."""
    id: int
    title: str
    description: str
    related_error_id: str = ""
    repro_steps: Optional[str] = None
    system_info: Optional[str] = None
    priority: int = 2
    severity: str = "2 - High"
    tags: List[str] = field(default_factory=list)
    assigned_to: Optional[str] = None
    area_path: Optional[str] = None
    iteration_path: Optional[str] = None
    state: str = "New"
    bug_branch: Optional[str] = None
    pull_request_url: Optional[str] = None


@dataclass(frozen=True)
class RepositoryRecord:
    """Repository metadata returned by the source control host."""
    full_name: str
    url: str
    default_branch: str


@dataclass(frozen=True)
class RepositorySearchHit:
    """One repository search result."""
    owner: str
    name: str
    full_name: str
    url: str


@dataclass(frozen=True)
class PullRequestRef:
    url: str
    number: int


@dataclass(frozen=True)
class FileContents:
    content: str
    sha: str


@dataclass(frozen=True)
class CommitInfo:
    sha: str
    message: str
    author: str


@dataclass
class ChannelMessage:
    """A chat message sent to a team channel."""
    team_id: str
    channel_id: str
    message: str
    format: str = "markdown"  # text, markdown
    importance: str = "normal"  # normal, high, urgent
    sent_at: datetime = field(default_factory=datetime.now)


@dataclass
class FixRequest:
    """Everything the fix agent needs to attempt a fix."""
    error_message: str
    stack_trace: ParsedStackTrace
    repository: str
    branch: str
    context: Optional[str] = None
    environment_id: Optional[str] = None


@dataclass
class FixAgentResult:
    """Result of a completed (or abandoned) fix agent run."""
    run_id: str
    success: bool
    summary: str = ""
    files_modified: List[str] = field(default_factory=list)
    commit_sha: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0
    timed_out: bool = False


@dataclass
class FixRunStatus:
    """Polled status of a fix agent run."""
    run_id: str
    state: FixRunState
    started_at: datetime
    message: Optional[str] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "message": self.message,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
