"""
In-memory collaborators for development (``--mock``) and tests.

They honour the same contracts as the production adapters and keep every
call they receive so tests can assert on them.
"""

import asyncio
import itertools
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..exceptions import NotificationError, SourceControlError, WorkItemError
from ..models import (
    AuditError,
    AuditErrorFilter,
    BugWorkItem,
    ChannelMessage,
    CommitInfo,
    CreateBugInput,
    ErrorSeverity,
    ErrorStats,
    FileContents,
    FixAgentResult,
    FixRequest,
    FixRunState,
    FixRunStatus,
    PullRequestRef,
    RepositoryRecord,
    RepositorySearchHit,
)
from .base import AuditStore, ChatNotifier, FixAgent, IssueTracker, SourceControlHost


def sample_errors() -> List[AuditError]:
    """Two representative errors used to seed the mock audit store."""
    now = datetime.now()
    return [
        AuditError(
            id="err-001",
            timestamp=now.isoformat(),
            message="TypeError: Cannot read property 'map' of undefined",
            stack_trace=(
                "TypeError: Cannot read property 'map' of undefined\n"
                "    at UserService.getUsers (/src/services/UserService.ts:45:23)\n"
                "    at async UserController.list (/src/controllers/UserController.ts:12:18)\n"
                "    at async /src/routes/users.ts:8:5"
            ),
            severity=ErrorSeverity.ERROR,
            source="user-service",
            environment="production",
            commit_sha="abc123def",
            repository="myorg/user-service",
        ),
        AuditError(
            id="err-002",
            timestamp=(now - timedelta(hours=1)).isoformat(),
            message="Database connection timeout",
            stack_trace=(
                "Error: Database connection timeout\n"
                "    at PostgresPool.connect (/src/db/connection.ts:78:11)\n"
                "    at async DataRepository.query (/src/repositories/DataRepository.ts:23:5)\n"
                "    at async ReportService.generate (/src/services/ReportService.ts:156:12)"
            ),
            severity=ErrorSeverity.CRITICAL,
            source="report-service",
            environment="production",
            commit_sha="def456ghi",
            repository="myorg/report-service",
        ),
    ]


class InMemoryAuditStore(AuditStore):
    """Audit store backed by a dict, preserving insertion order."""

    def __init__(self, errors: Optional[Iterable[AuditError]] = None):
        self.errors: Dict[str, AuditError] = {}
        for error in errors if errors is not None else sample_errors():
            self.errors[error.id] = error

    async def get_unprocessed_errors(self, error_filter: Optional[AuditErrorFilter] = None) -> List[AuditError]:
        error_filter = error_filter or AuditErrorFilter()
        results = [
            error for error in self.errors.values()
            if not error.processed and error_filter.matches(error)
        ]
        if error_filter.limit:
            results = results[:error_filter.limit]
        return results

    async def get_error_by_id(self, error_id: str) -> Optional[AuditError]:
        return self.errors.get(error_id)

    async def mark_as_processed(self, error_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        error = self.errors.get(error_id)
        if error:
            error.processed = True
            if metadata:
                error.metadata = {**error.metadata, **metadata}

    async def update_fix_info(
        self,
        error_id: str,
        work_item_id: Optional[int] = None,
        pull_request_url: Optional[str] = None,
        branch: Optional[str] = None,
        fixed_at: Optional[str] = None,
    ) -> None:
        error = self.errors.get(error_id)
        if not error:
            return
        if work_item_id is not None:
            error.work_item_id = work_item_id
        if pull_request_url:
            error.pull_request_url = pull_request_url
        if branch:
            error.fix_branch = branch
        if fixed_at:
            error.fixed_at = fixed_at

    async def get_error_stats(self) -> ErrorStats:
        stats = ErrorStats()
        for error in self.errors.values():
            if error.processed:
                continue
            stats.total_unprocessed += 1
            stats.by_severity[error.severity.value] = stats.by_severity.get(error.severity.value, 0) + 1
            stats.by_source[error.source] = stats.by_source.get(error.source, 0) + 1
        return stats

    def add_error(self, error: AuditError) -> None:
        self.errors[error.id] = error


class InMemoryIssueTracker(IssueTracker):
    """Issue tracker with sequential work item ids starting at 1000."""

    def __init__(self):
        self.work_items: Dict[int, BugWorkItem] = {}
        self.comments: Dict[int, List[str]] = {}
        self._ids = itertools.count(1000)

    async def create_bug(self, bug: CreateBugInput) -> BugWorkItem:
        work_item = BugWorkItem(
            id=next(self._ids),
            title=bug.title,
            description=bug.description,
            related_error_id=bug.related_error_id,
            repro_steps=bug.repro_steps,
            system_info=bug.system_info,
            priority=bug.priority,
            severity=bug.severity,
            tags=list(bug.tags),
            assigned_to=bug.assigned_to,
            area_path=bug.area_path,
            iteration_path=bug.iteration_path,
        )
        self.work_items[work_item.id] = work_item
        self.comments[work_item.id] = []
        return work_item

    async def update_bug(self, work_item_id: int, updates: Dict[str, Any]) -> BugWorkItem:
        work_item = self._require(work_item_id, "update")
        for key, value in updates.items():
            if key in ("id", "related_error_id"):
                continue
            if hasattr(work_item, key):
                setattr(work_item, key, value)
        return work_item

    async def add_comment(self, work_item_id: int, comment: str) -> None:
        self._require(work_item_id, "comment")
        self.comments[work_item_id].append(comment)

    async def link_pull_request(self, work_item_id: int, pr_url: str) -> None:
        self._require(work_item_id, "link_pull_request").pull_request_url = pr_url

    async def get_work_item(self, work_item_id: int) -> Optional[BugWorkItem]:
        return self.work_items.get(work_item_id)

    async def close_work_item(self, work_item_id: int, reason: str) -> None:
        work_item = self._require(work_item_id, "close")
        work_item.state = "Closed"
        self.comments[work_item_id].append(f"Closed: {reason}")

    def _require(self, work_item_id: int, operation: str) -> BugWorkItem:
        work_item = self.work_items.get(work_item_id)
        if work_item is None:
            raise WorkItemError(
                f"Work item {work_item_id} not found",
                work_item_id=work_item_id,
                operation=operation,
            )
        return work_item


class InMemorySourceControlHost(SourceControlHost):
    """Source control host that only knows the repositories it was given."""

    def __init__(self, repositories: Optional[Iterable[str]] = None, default_branch: str = "main"):
        self.repositories: Dict[str, RepositoryRecord] = {}
        self.branches: Dict[str, str] = {}
        self.files: Dict[str, FileContents] = {}
        self.pull_requests: List[Dict[str, Any]] = []
        self.lookups: List[str] = []
        self.searches: List[str] = []
        self._pr_numbers = itertools.count(1)
        for full_name in repositories or ():
            self.add_repository(full_name, default_branch)

    def add_repository(self, full_name: str, default_branch: str = "main") -> None:
        self.repositories[full_name.lower()] = RepositoryRecord(
            full_name=full_name,
            url=f"https://github.com/{full_name}",
            default_branch=default_branch,
        )
        self.branches[f"{full_name}:{default_branch}"] = "initial-sha-123"

    async def create_branch(self, owner: str, repo: str, branch_name: str, from_branch: Optional[str] = None) -> None:
        source = from_branch or "main"
        key = f"{owner}/{repo}:{branch_name}"
        if key in self.branches:
            raise SourceControlError(
                f"Branch '{branch_name}' already exists",
                repository=f"{owner}/{repo}",
                github_error="HTTP 422: Reference already exists",
            )
        self.branches[key] = self.branches.get(f"{owner}/{repo}:{source}", "default-sha")

    async def push_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: List[Dict[str, str]],
        commit_message: str
    ) -> str:
        sha = f"sha-{time.time_ns():x}"
        for file in files:
            self.files[f"{owner}/{repo}:{branch}:{file['path']}"] = FileContents(content=file["content"], sha=sha)
        self.branches[f"{owner}/{repo}:{branch}"] = sha
        return sha

    async def create_pull_request(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool = False
    ) -> PullRequestRef:
        number = next(self._pr_numbers)
        url = f"https://github.com/{owner}/{repo}/pull/{number}"
        self.pull_requests.append({
            "number": number,
            "url": url,
            "title": title,
            "body": body,
            "head": head,
            "base": base,
            "draft": draft,
        })
        return PullRequestRef(url=url, number=number)

    async def get_file_contents(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Optional[FileContents]:
        return self.files.get(f"{owner}/{repo}:{ref or 'main'}:{path}")

    async def get_repository(self, owner: str, repo: str) -> Optional[RepositoryRecord]:
        self.lookups.append(f"{owner}/{repo}")
        return self.repositories.get(f"{owner}/{repo}".lower())

    async def search_repositories(self, query: str) -> List[RepositorySearchHit]:
        self.searches.append(query)
        terms = [term.lower() for term in query.split()]
        hits = []
        for record in self.repositories.values():
            owner, _, name = record.full_name.partition("/")
            if any(term in name.lower() or name.lower() in term for term in terms):
                hits.append(RepositorySearchHit(owner=owner, name=name, full_name=record.full_name, url=record.url))
        return hits

    async def get_latest_commit(self, owner: str, repo: str, branch: str) -> Optional[CommitInfo]:
        sha = self.branches.get(f"{owner}/{repo}:{branch}")
        if not sha:
            return None
        return CommitInfo(sha=sha, message="Latest commit message", author="Test Author")


class InMemoryChatNotifier(ChatNotifier):
    """Chat notifier that records messages; can be told to fail."""

    def __init__(self, fail_sends: bool = False):
        self.messages: List[ChannelMessage] = []
        self.fail_sends = fail_sends

    async def send_channel_message(
        self,
        team_id: str,
        channel_id: str,
        message: str,
        format: str = "markdown",
        importance: str = "normal"
    ) -> None:
        if self.fail_sends:
            raise NotificationError("Simulated notification failure", channel_id=channel_id)
        self.messages.append(ChannelMessage(
            team_id=team_id,
            channel_id=channel_id,
            message=message,
            format=format,
            importance=importance,
        ))

    @property
    def last_message(self) -> Optional[ChannelMessage]:
        return self.messages[-1] if self.messages else None


class InMemoryFixAgent(FixAgent):
    """Fix agent that "fixes" the primary frame's file after a short delay."""

    def __init__(
        self,
        simulate_failure: bool = False,
        simulate_timeout: bool = False,
        simulated_delay: float = 0.0
    ):
        self.simulate_failure = simulate_failure
        self.simulate_timeout = simulate_timeout
        self.simulated_delay = simulated_delay
        self.requests: Dict[str, FixRequest] = {}
        self.runs: Dict[str, FixRunStatus] = {}
        self._run_ids = itertools.count(1)

    async def submit_fix(self, request: FixRequest) -> str:
        run_id = f"mock-run-{next(self._run_ids)}"
        self.requests[run_id] = request
        self.runs[run_id] = FixRunStatus(
            run_id=run_id,
            state=FixRunState.RUNNING,
            started_at=datetime.now(),
            message="Working on fix...",
        )
        return run_id

    async def get_run_status(self, run_id: str) -> FixRunStatus:
        status = self.runs.get(run_id)
        if status is None:
            return FixRunStatus(run_id=run_id, state=FixRunState.FAILED, started_at=datetime.now(), message="Run not found")
        return status

    async def wait_for_completion(self, run_id: str, timeout: float) -> FixAgentResult:
        started = time.monotonic()
        status = self.runs.get(run_id)
        if status is None:
            return FixAgentResult(run_id=run_id, success=False, summary="Run not found", error="Run not found")

        if self.simulate_timeout:
            return FixAgentResult(
                run_id=run_id,
                success=False,
                summary="Fix timed out",
                error=f"Timeout after {timeout}s",
                timed_out=True,
            )

        if status.state == FixRunState.RUNNING:
            await asyncio.sleep(self.simulated_delay)
            status.state = FixRunState.FAILED if self.simulate_failure else FixRunState.COMPLETED
            status.completed_at = datetime.now()
        duration = time.monotonic() - started

        if status.state == FixRunState.CANCELLED:
            return FixAgentResult(run_id=run_id, success=False, summary="Fix was cancelled", error="Run cancelled", duration_seconds=duration)
        if status.state == FixRunState.FAILED:
            status.message = "Fix failed"
            return FixAgentResult(
                run_id=run_id,
                success=False,
                summary="Mock fix failed",
                error="Simulated failure for testing",
                duration_seconds=duration,
            )

        request = self.requests[run_id]
        primary = request.stack_trace.primary_frame()
        fixed_file = primary.file_path if primary else "src/unknown.ts"
        status.message = "Fix completed successfully"
        return FixAgentResult(
            run_id=run_id,
            success=True,
            summary=f"Fixed {request.error_message} in {fixed_file} by adding null check and proper error handling",
            files_modified=[fixed_file],
            commit_sha=f"mock-sha-{time.time_ns():x}",
            duration_seconds=duration,
        )

    async def cancel_run(self, run_id: str) -> None:
        status = self.runs.get(run_id)
        if status and not status.state.is_finished:
            status.state = FixRunState.CANCELLED
            status.completed_at = datetime.now()
