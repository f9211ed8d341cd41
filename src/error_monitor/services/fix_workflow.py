"""
Fix workflow service for the Error Monitor.

Drives one audit log error through ticket creation, branch creation, the fix
agent, pull request creation, team notification and completion marking. Each
stage transition produces a new immutable ``WorkflowStatus``; the first
failure short-circuits the remaining stages and is turned into a failed
``FixResult`` instead of being raised.
"""

import asyncio
from datetime import datetime
from typing import Callable, List, Optional
from loguru import logger

from ..adapters.base import AuditStore, ChatNotifier, FixAgent, IssueTracker, SourceControlHost
from ..config import WorkflowSettings
from ..constants import BATCH, WORKFLOW
from ..exceptions import FixAgentError, FixAgentTimeoutError, WorkflowError
from ..models import (
    AuditError,
    AuditErrorFilter,
    CreateBugInput,
    ErrorSeverity,
    FixAgentResult,
    FixRequest,
    FixResult,
    FixRunStatus,
    Language,
    ModifiedFile,
    ParsedStackTrace,
    RepositoryDescriptor,
    WorkflowStage,
    WorkflowStatus,
    map_severity_to_label,
    map_severity_to_priority,
)
from ..validation import InputValidator
from .repository_resolver import RepositoryResolver
from .stack_trace_parser import StackTraceParser

StatusListener = Callable[[str, WorkflowStatus], None]


# Stage transitions

def start(message: str = "Starting fix workflow", now: Optional[datetime] = None) -> WorkflowStatus:
    """Initial status of a run."""
    return WorkflowStatus(
        stage=WorkflowStage.INITIALIZING,
        progress=WORKFLOW.STAGE_PROGRESS[WorkflowStage.INITIALIZING.value],
        message=message,
        started_at=now or datetime.now(),
    )


def advance(status: WorkflowStatus, stage: WorkflowStage, message: str) -> WorkflowStatus:
    """
    Move to a later, non-terminal stage.

    Raises:
        WorkflowError: If the run already ended or the stage is terminal
    """
    if status.stage.is_terminal:
        raise WorkflowError(
            f"Cannot enter {stage.value}: workflow already {status.stage.value}",
            stage=status.stage.value,
        )
    if stage.is_terminal:
        raise WorkflowError(f"Use complete() or fail() to enter {stage.value}", stage=status.stage.value)

    return WorkflowStatus(
        stage=stage,
        progress=max(status.progress, WORKFLOW.STAGE_PROGRESS[stage.value]),
        message=message,
        started_at=status.started_at,
    )


def complete(status: WorkflowStatus, message: str = "Fix workflow completed", now: Optional[datetime] = None) -> WorkflowStatus:
    """Terminal success."""
    if status.stage.is_terminal:
        raise WorkflowError(f"Workflow already {status.stage.value}", stage=status.stage.value)
    return WorkflowStatus(
        stage=WorkflowStage.COMPLETED,
        progress=WORKFLOW.STAGE_PROGRESS[WorkflowStage.COMPLETED.value],
        message=message,
        started_at=status.started_at,
        ended_at=now or datetime.now(),
    )


def fail(status: WorkflowStatus, error: str, now: Optional[datetime] = None) -> WorkflowStatus:
    """Terminal failure, remembering the stage that failed. Progress is kept."""
    if status.stage.is_terminal:
        raise WorkflowError(f"Workflow already {status.stage.value}", stage=status.stage.value)
    return WorkflowStatus(
        stage=WorkflowStage.FAILED,
        progress=status.progress,
        message=f"Failed during {status.stage.value}",
        started_at=status.started_at,
        ended_at=now or datetime.now(),
        error=error,
        failed_stage=status.stage,
    )


# Ticket and pull request content

def branch_name(error_id: str) -> str:
    """Deterministic fix branch name for an error."""
    return f"{WORKFLOW.BRANCH_PREFIX}{InputValidator.validate_error_id(error_id)}"


def determine_area_path(source: str, repository_name: str, project: Optional[str]) -> Optional[str]:
    """
    Area path from the keyword table: the source is checked first, then the
    repository name. Returns None without a project or without a match.
    """
    if not project:
        return None

    for candidate in (source, repository_name):
        candidate = (candidate or "").lower()
        if not candidate:
            continue
        for keyword, area in WORKFLOW.AREA_KEYWORDS:
            if keyword in candidate:
                return f"{project}\\{area}"
    return None


def build_tags(error: AuditError, repository: RepositoryDescriptor, stack_trace: ParsedStackTrace) -> List[str]:
    tags = [WORKFLOW.AUTO_FIX_TAG, WORKFLOW.AGENT_TAG]
    for value in (error.source, error.environment, repository.name):
        if value and value not in tags:
            tags.append(value)
    if stack_trace.language != Language.UNKNOWN:
        tags.append(stack_trace.language.value)
    return tags


def _location(stack_trace: ParsedStackTrace) -> str:
    frame = stack_trace.primary_frame()
    if not frame:
        return "Unknown"
    location = frame.file_path
    if frame.line_number is not None:
        location += f":{frame.line_number}"
    if frame.function_name:
        owner = f"{frame.class_name}." if frame.class_name else ""
        location += f" in `{owner}{frame.function_name}`"
    return location


def format_bug_description(
    error: AuditError,
    stack_trace: ParsedStackTrace,
    repository: RepositoryDescriptor
) -> str:
    return "\n".join([
        "## Error Details",
        "",
        f"**Error Type:** {stack_trace.error_type or 'Unknown'}",
        f"**Message:** {stack_trace.error_message}",
        f"**Severity:** {error.severity.value}",
        f"**Source:** {error.source}",
        f"**Environment:** {error.environment}",
        f"**Repository:** {repository.full_name}",
        f"**Language:** {stack_trace.language.value}",
        f"**Location:** {_location(stack_trace)}",
        f"**Timestamp:** {error.timestamp}",
        f"**Error ID:** {error.id}",
        "",
        "## Stack Trace",
        "",
        "```",
        stack_trace.raw,
        "```",
        "",
        "_This bug was created automatically by the error monitor._",
    ])


def format_repro_steps(error: AuditError) -> str:
    return "\n".join([
        f"Error observed in {error.environment} by {error.source}:",
        "",
        "```",
        error.stack_trace,
        "```",
    ])


def format_system_info(error: AuditError, repository: RepositoryDescriptor) -> str:
    lines = [
        f"Environment: {error.environment}",
        f"Source: {error.source}",
        f"Repository: {repository.full_name}",
    ]
    if error.commit_sha:
        lines.append(f"Commit: {error.commit_sha}")
    return "\n".join(lines)


def format_pr_description(
    error: AuditError,
    stack_trace: ParsedStackTrace,
    agent_result: FixAgentResult,
    work_item_id: int
) -> str:
    lines = [
        "## Automated Fix",
        "",
        agent_result.summary or "No summary provided.",
        "",
        "## Error",
        "",
        f"**Type:** {stack_trace.error_type or 'Unknown'}",
        f"**Message:** {stack_trace.error_message}",
        f"**Location:** {_location(stack_trace)}",
        "",
    ]
    if agent_result.files_modified:
        lines += ["## Files Changed", ""]
        lines += [f"- `{path}`" for path in agent_result.files_modified]
        lines.append("")
    lines += [
        "## Stack Trace",
        "",
        "```",
        stack_trace.raw,
        "```",
        "",
        f"Related work item: #{work_item_id}",
        f"Error ID: {error.id}",
        "",
        "> Review carefully before merging. This pull request was generated automatically.",
    ]
    return "\n".join(lines)


class FixWorkflow:
    """Orchestrates the automated fix of audit log errors."""

    def __init__(
        self,
        audit_store: AuditStore,
        issue_tracker: IssueTracker,
        source_control: SourceControlHost,
        notifier: ChatNotifier,
        fix_agent: FixAgent,
        settings: WorkflowSettings,
        parser: Optional[StackTraceParser] = None,
        resolver: Optional[RepositoryResolver] = None,
        status_listener: Optional[StatusListener] = None
    ):
        """
        Initialize the fix workflow.

        Args:
            audit_store: Source of errors, updated once an error is processed
            issue_tracker: Where bug work items are created
            source_control: Host for branches and pull requests
            notifier: Team chat notifier
            fix_agent: Automated code-fixing service
            settings: Explicit workflow settings (team channel, project, timeout)
            parser: Stack trace parser (a default one is created if omitted)
            resolver: Repository resolver (defaults to one over source_control)
            status_listener: Called with (error_id, status) on every transition
        """
        self.audit_store = audit_store
        self.issue_tracker = issue_tracker
        self.source_control = source_control
        self.notifier = notifier
        self.fix_agent = fix_agent
        self.settings = settings
        self.parser = parser or StackTraceParser()
        self.resolver = resolver or RepositoryResolver(source_control)
        self.status_listener = status_listener

    def _report(self, error_id: str, status: WorkflowStatus) -> WorkflowStatus:
        logger.debug(f"[{error_id}] {status.stage.value} ({status.progress}%): {status.message}")
        if self.status_listener:
            self.status_listener(error_id, status)
        return status

    async def process_error(self, error: AuditError) -> FixResult:
        """
        Run the full fix workflow for one error.

        Returns:
            FixResult; on failure success is False and error_message is set.
            Fields of stages that never completed are left empty.
        """
        logger.info(f"Processing error {error.id}: {error.message[:100]}")
        result = FixResult(success=False, error_id=error.id)
        status = self._report(error.id, start())

        try:
            status = self._report(error.id, advance(status, WorkflowStage.PARSING_ERROR, "Parsing stack trace"))
            stack_trace = self.parser.parse(error.stack_trace, error.message)
            # Fails before any ticket exists when the id cannot name a branch
            branch = branch_name(error.id)
            logger.debug(
                f"Parsed {len(stack_trace.frames)} frames ({stack_trace.language.value}) for error {error.id}"
            )

            status = self._report(error.id, advance(status, WorkflowStage.FINDING_REPOSITORY, "Finding repository"))
            repository = await self.resolver.resolve(error, stack_trace)
            if repository is None:
                raise WorkflowError(
                    f"Repository not found for error {error.id}",
                    error_id=error.id,
                    stage=status.stage.value,
                )
            result.repository = repository.full_name

            status = self._report(error.id, advance(status, WorkflowStage.CREATING_WORK_ITEM, "Creating bug work item"))
            bug_title = f"{WORKFLOW.TITLE_PREFIX} {error.message[:WORKFLOW.MAX_BUG_TITLE_LENGTH]}"
            work_item = await self.issue_tracker.create_bug(CreateBugInput(
                title=bug_title,
                description=format_bug_description(error, stack_trace, repository),
                related_error_id=error.id,
                repro_steps=format_repro_steps(error),
                system_info=format_system_info(error, repository),
                priority=map_severity_to_priority(error.severity),
                severity=map_severity_to_label(error.severity),
                tags=build_tags(error, repository, stack_trace),
                area_path=determine_area_path(error.source, repository.name, self.settings.devops_project),
                iteration_path=(
                    f"{self.settings.devops_project}\\{WORKFLOW.BACKLOG_ITERATION}"
                    if self.settings.devops_project else None
                ),
            ))
            result.work_item_id = work_item.id
            logger.info(f"Created work item #{work_item.id} for error {error.id}")

            status = self._report(error.id, advance(status, WorkflowStage.CREATING_BRANCH, "Creating fix branch"))
            await self.source_control.create_branch(
                repository.owner, repository.name, branch, repository.default_branch
            )
            result.branch = branch
            logger.info(f"Created branch {branch} in {repository.full_name}")

            status = self._report(error.id, advance(status, WorkflowStage.RUNNING_FIX_AGENT, "Running fix agent"))
            agent_result = await self._run_fix_agent(error, stack_trace, repository, branch, work_item.id, bug_title, result)
            result.fix_summary = agent_result.summary
            result.modified_files = [ModifiedFile(path=path) for path in agent_result.files_modified]

            status = self._report(error.id, advance(status, WorkflowStage.CREATING_PULL_REQUEST, "Creating pull request"))
            pr_title = f"{WORKFLOW.TITLE_PREFIX} {error.message[:WORKFLOW.MAX_PR_TITLE_LENGTH]}"
            pull_request = await self.source_control.create_pull_request(
                owner=repository.owner,
                repo=repository.name,
                title=pr_title,
                body=format_pr_description(error, stack_trace, agent_result, work_item.id),
                head=branch,
                base=repository.default_branch,
                draft=True,
            )
            result.pull_request_url = pull_request.url
            result.pull_request_number = pull_request.number
            await self.issue_tracker.link_pull_request(work_item.id, pull_request.url)
            await self.issue_tracker.add_comment(
                work_item.id,
                f"Automated fix PR created: {pull_request.url}\n\nFix summary: {agent_result.summary}",
            )
            logger.info(f"Created pull request #{pull_request.number}: {pull_request.url}")

            status = self._report(error.id, advance(status, WorkflowStage.NOTIFYING_TEAM, "Notifying team"))
            await self.notifier.send_pr_notification(
                team_id=self.settings.teams_team_id,
                channel_id=self.settings.teams_channel_id,
                pr_url=pull_request.url,
                pr_title=pr_title,
                repository=repository.full_name,
                bug_title=bug_title,
                fix_summary=agent_result.summary,
                work_item_id=work_item.id,
            )

            await self.audit_store.mark_as_processed(error.id, {
                "work_item_id": work_item.id,
                "pull_request_url": pull_request.url,
                "branch": branch,
                "fix_run_id": result.fix_run_id,
            })
            await self.audit_store.update_fix_info(
                error.id,
                work_item_id=work_item.id,
                pull_request_url=pull_request.url,
                branch=branch,
                fixed_at=datetime.now().isoformat(),
            )

            status = self._report(error.id, complete(status))
            result.success = True
            result.status = status
            result.timestamp = status.ended_at
            logger.info(f"Fix workflow completed for error {error.id}: {pull_request.url}")
            return result

        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            failed_stage = status.stage
            status = self._report(error.id, fail(status, message))
            logger.error(f"Fix workflow failed for error {error.id} during {failed_stage.value}: {message}")

            await self._notify_failure(error, failed_stage, message)

            result.success = False
            result.error_message = message
            result.status = status
            result.timestamp = status.ended_at
            return result

    async def _run_fix_agent(
        self,
        error: AuditError,
        stack_trace: ParsedStackTrace,
        repository: RepositoryDescriptor,
        branch: str,
        work_item_id: int,
        bug_title: str,
        result: FixResult
    ) -> FixAgentResult:
        """Submit the fix and wait for it, bounded by the configured timeout."""
        timeout = self.settings.fix_agent_timeout
        run_id = await self.fix_agent.submit_fix(FixRequest(
            error_message=error.message,
            stack_trace=stack_trace,
            repository=repository.full_name,
            branch=branch,
            context=f"Work item #{work_item_id}: {bug_title}",
            environment_id=self.settings.fix_agent_environment_id,
        ))
        result.fix_run_id = run_id
        logger.info(f"Submitted fix run {run_id} for {repository.full_name}@{branch}")

        try:
            agent_result = await asyncio.wait_for(
                self.fix_agent.wait_for_completion(run_id, timeout),
                timeout=timeout + self.settings.fix_agent_grace,
            )
        except asyncio.TimeoutError:
            agent_result = FixAgentResult(run_id=run_id, success=False, timed_out=True)

        if agent_result.timed_out:
            raise FixAgentTimeoutError(
                f"Fix agent timed out after {timeout:g}s",
                timeout_seconds=timeout,
                run_id=run_id,
                repository=repository.full_name,
            )
        if not agent_result.success:
            raise FixAgentError(
                f"Fix agent failed: {agent_result.error or agent_result.summary or 'unknown error'}",
                run_id=run_id,
                repository=repository.full_name,
            )

        logger.info(f"Fix run {run_id} succeeded in {agent_result.duration_seconds:.1f}s")
        return agent_result

    async def _notify_failure(self, error: AuditError, stage: WorkflowStage, message: str) -> None:
        """Best-effort failure notification; its own failure is only logged."""
        try:
            await self.notifier.send_error_notification(
                team_id=self.settings.teams_team_id,
                channel_id=self.settings.teams_channel_id,
                error_message=message,
                error_id=error.id,
                stage=stage.value,
            )
        except Exception as e:
            logger.error(f"Failed to send error notification for {error.id}: {e}")

    def default_filter(self) -> AuditErrorFilter:
        """Critical and error severities, capped at the per-cycle maximum."""
        return AuditErrorFilter(
            severities=[ErrorSeverity.parse(value) for value in BATCH.DEFAULT_SEVERITIES],
            limit=self.settings.max_errors_per_cycle,
        )

    async def process_unprocessed_errors(self, error_filter: Optional[AuditErrorFilter] = None) -> List[FixResult]:
        """
        Process unprocessed errors one at a time, in store order.

        A failure on one error never stops the rest; exactly one FixResult is
        returned per fetched error.
        """
        errors = await self.audit_store.get_unprocessed_errors(error_filter or self.default_filter())
        logger.info(f"Found {len(errors)} unprocessed errors")

        results = []
        for error in errors:
            try:
                results.append(await self.process_error(error))
            except Exception as e:
                logger.exception(f"Unexpected failure processing error {error.id}")
                results.append(FixResult(success=False, error_id=error.id, error_message=str(e)))

        succeeded = sum(1 for result in results if result.success)
        logger.info(f"Processed {len(results)} errors: {succeeded} succeeded, {len(results) - succeeded} failed")
        return results

    async def process_error_by_id(self, error_id: str) -> Optional[FixResult]:
        """Fetch one error from the audit store and process it; None if absent."""
        error = await self.audit_store.get_error_by_id(error_id)
        if error is None:
            logger.warning(f"Error {error_id} not found in audit store")
            return None
        return await self.process_error(error)

    async def get_fix_run_status(self, run_id: str) -> FixRunStatus:
        return await self.fix_agent.get_run_status(run_id)

    async def cancel_fix_run(self, run_id: str) -> None:
        logger.info(f"Cancelling fix run {run_id}")
        await self.fix_agent.cancel_run(run_id)
