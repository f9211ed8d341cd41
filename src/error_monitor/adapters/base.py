"""
Collaborator contracts consumed by the fix workflow.

Each external system is reached through one of these abstract classes so the
workflow can run against production adapters or in-memory doubles alike.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models import (
    AuditError,
    AuditErrorFilter,
    BugWorkItem,
    CommitInfo,
    CreateBugInput,
    ErrorStats,
    FileContents,
    FixAgentResult,
    FixRequest,
    FixRunStatus,
    PullRequestRef,
    RepositoryRecord,
    RepositorySearchHit,
)


class AuditStore(ABC):
    """Audit log table holding application errors."""

    @abstractmethod
    async def get_unprocessed_errors(self, error_filter: Optional[AuditErrorFilter] = None) -> List[AuditError]:
        """Fetch unprocessed errors matching the filter, in store order."""

    @abstractmethod
    async def get_error_by_id(self, error_id: str) -> Optional[AuditError]:
        """Fetch one error, or None if absent."""

    @abstractmethod
    async def mark_as_processed(self, error_id: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Set the processed flag, merging optional metadata."""

    @abstractmethod
    async def update_fix_info(
        self,
        error_id: str,
        work_item_id: Optional[int] = None,
        pull_request_url: Optional[str] = None,
        branch: Optional[str] = None,
        fixed_at: Optional[str] = None,
    ) -> None:
        """Persist fix information onto the error's dedicated fields."""

    @abstractmethod
    async def get_error_stats(self) -> ErrorStats:
        """Counts of unprocessed errors by severity and source."""


class IssueTracker(ABC):
    """Issue tracker holding bug work items."""

    @abstractmethod
    async def create_bug(self, bug: CreateBugInput) -> BugWorkItem:
        """Create a bug and return it with its assigned id."""

    @abstractmethod
    async def update_bug(self, work_item_id: int, updates: Dict[str, Any]) -> BugWorkItem:
        """Update fields of an existing bug."""

    @abstractmethod
    async def add_comment(self, work_item_id: int, comment: str) -> None:
        """Append a comment to a work item."""

    @abstractmethod
    async def link_pull_request(self, work_item_id: int, pr_url: str) -> None:
        """Link a pull request URL to a work item."""

    @abstractmethod
    async def get_work_item(self, work_item_id: int) -> Optional[BugWorkItem]:
        """Fetch a work item, or None if absent."""

    @abstractmethod
    async def close_work_item(self, work_item_id: int, reason: str) -> None:
        """Close a work item with a resolution reason."""


class SourceControlHost(ABC):
    """Source control host (branches, commits, pull requests, search)."""

    @abstractmethod
    async def create_branch(self, owner: str, repo: str, branch_name: str, from_branch: Optional[str] = None) -> None:
        """Create a branch from a source branch (default branch when omitted)."""

    @abstractmethod
    async def push_files(
        self,
        owner: str,
        repo: str,
        branch: str,
        files: List[Dict[str, str]],
        commit_message: str
    ) -> str:
        """Commit files ({'path', 'content'}) onto a branch; returns the commit SHA."""

    @abstractmethod
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
        """Open a pull request."""

    @abstractmethod
    async def get_file_contents(self, owner: str, repo: str, path: str, ref: Optional[str] = None) -> Optional[FileContents]:
        """Read a file at a ref, or None if absent."""

    @abstractmethod
    async def get_repository(self, owner: str, repo: str) -> Optional[RepositoryRecord]:
        """Repository metadata, or None if the repository does not exist."""

    @abstractmethod
    async def search_repositories(self, query: str) -> List[RepositorySearchHit]:
        """Fuzzy repository search."""

    @abstractmethod
    async def get_latest_commit(self, owner: str, repo: str, branch: str) -> Optional[CommitInfo]:
        """Latest commit on a branch, or None."""


class ChatNotifier(ABC):
    """Team chat channel notifications."""

    @abstractmethod
    async def send_channel_message(
        self,
        team_id: str,
        channel_id: str,
        message: str,
        format: str = "markdown",
        importance: str = "normal"
    ) -> None:
        """Send a formatted message to a channel."""

    async def send_pr_notification(
        self,
        team_id: str,
        channel_id: str,
        pr_url: str,
        pr_title: str,
        repository: str,
        bug_title: str,
        fix_summary: str,
        work_item_id: Optional[int] = None
    ) -> None:
        """Announce an automatically created fix pull request."""
        lines = [
            "🤖 **Automated Bug Fix PR Created**",
            "",
            f"**Repository:** {repository}",
            f"**Bug:** {bug_title}",
        ]
        if work_item_id is not None:
            lines.append(f"**Work Item:** #{work_item_id}")
        lines += [
            "",
            f"**Summary:** {fix_summary}",
            "",
            f"[**View Pull Request: {pr_title}**]({pr_url})",
        ]
        await self.send_channel_message(
            team_id=team_id,
            channel_id=channel_id,
            message="\n".join(lines),
            format="markdown",
            importance="high",
        )

    async def send_error_notification(
        self,
        team_id: str,
        channel_id: str,
        error_message: str,
        error_id: str,
        stage: str
    ) -> None:
        """Report that processing an error failed at a given stage."""
        message = (
            "⚠️ **Auto-Fix Error**\n\n"
            f"**Error ID:** {error_id}\n"
            f"**Stage:** {stage}\n"
            f"**Message:** {error_message}"
        )
        await self.send_channel_message(
            team_id=team_id,
            channel_id=channel_id,
            message=message,
            format="markdown",
            importance="urgent",
        )


class FixAgent(ABC):
    """Automated code-fixing service."""

    @abstractmethod
    async def submit_fix(self, request: FixRequest) -> str:
        """Submit a fix task; returns the run id."""

    @abstractmethod
    async def get_run_status(self, run_id: str) -> FixRunStatus:
        """Poll the status of a run."""

    @abstractmethod
    async def wait_for_completion(self, run_id: str, timeout: float) -> FixAgentResult:
        """Block until the run finishes or the timeout elapses (result.timed_out)."""

    @abstractmethod
    async def cancel_run(self, run_id: str) -> None:
        """Cancel a run."""
