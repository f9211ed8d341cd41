#!/usr/bin/env python3
"""
Tests for the fix workflow: stage transitions, the end-to-end happy path,
failure handling and batch isolation.
"""

import os
import sys
import unittest
from datetime import datetime

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from error_monitor.adapters.memory import (
    InMemoryAuditStore,
    InMemoryChatNotifier,
    InMemoryFixAgent,
    InMemoryIssueTracker,
    InMemorySourceControlHost,
)
from error_monitor.config import WorkflowSettings
from error_monitor.exceptions import WorkflowError
from error_monitor.models import (
    AuditError,
    AuditErrorFilter,
    ErrorSeverity,
    FixRequest,
    Language,
    ParsedStackTrace,
    RepositoryDescriptor,
    WorkflowStage,
    map_severity_to_label,
    map_severity_to_priority,
)
from error_monitor.services.fix_workflow import (
    FixWorkflow,
    advance,
    branch_name,
    build_tags,
    complete,
    determine_area_path,
    fail,
    start,
)

TYPE_ERROR_TRACE = (
    "TypeError: Cannot read property 'map' of undefined\n"
    "    at UserService.getUsers (/src/services/UserService.ts:45:23)\n"
    "    at async UserController.list (/src/controllers/UserController.ts:12:18)"
)


def make_error(error_id="err-001", repository="myorg/user-service", source="user-service",
               severity=ErrorSeverity.ERROR, stack_trace=TYPE_ERROR_TRACE):
    return AuditError(
        id=error_id,
        timestamp="2024-01-15T10:30:00",
        message="TypeError: Cannot read property 'map' of undefined",
        stack_trace=stack_trace,
        severity=severity,
        source=source,
        environment="production",
        commit_sha="abc123",
        repository=repository,
    )


class TestStageTransitions(unittest.TestCase):
    """Pure status transition functions."""

    def setUp(self):
        self.started = datetime(2024, 1, 1, 12, 0, 0)
        self.status = start(now=self.started)

    def test_start(self):
        self.assertEqual(self.status.stage, WorkflowStage.INITIALIZING)
        self.assertEqual(self.status.progress, 0)
        self.assertIsNone(self.status.ended_at)

    def test_advance_returns_new_value(self):
        parsed = advance(self.status, WorkflowStage.PARSING_ERROR, "Parsing")

        self.assertIsNot(parsed, self.status)
        self.assertEqual(self.status.stage, WorkflowStage.INITIALIZING)
        self.assertEqual(parsed.stage, WorkflowStage.PARSING_ERROR)
        self.assertEqual(parsed.progress, 10)
        self.assertEqual(parsed.started_at, self.started)

    def test_transitions_are_deterministic(self):
        self.assertEqual(
            advance(self.status, WorkflowStage.CREATING_BRANCH, "Branch"),
            advance(self.status, WorkflowStage.CREATING_BRANCH, "Branch"),
        )

    def test_progress_never_decreases(self):
        late = advance(self.status, WorkflowStage.CREATING_PULL_REQUEST, "PR")
        earlier = advance(late, WorkflowStage.CREATING_BRANCH, "Branch")
        self.assertEqual(earlier.progress, 80)

    def test_fail_records_stage_and_error(self):
        branch = advance(self.status, WorkflowStage.CREATING_BRANCH, "Branch")
        ended = datetime(2024, 1, 1, 12, 1, 0)

        failed = fail(branch, "Branch exists", now=ended)

        self.assertEqual(failed.stage, WorkflowStage.FAILED)
        self.assertEqual(failed.failed_stage, WorkflowStage.CREATING_BRANCH)
        self.assertEqual(failed.error, "Branch exists")
        self.assertEqual(failed.progress, 40)
        self.assertEqual(failed.ended_at, ended)

    def test_complete(self):
        done = complete(advance(self.status, WorkflowStage.NOTIFYING_TEAM, "Notify"))
        self.assertEqual(done.stage, WorkflowStage.COMPLETED)
        self.assertEqual(done.progress, 100)
        self.assertIsNotNone(done.ended_at)

    def test_terminal_states_are_frozen(self):
        done = complete(self.status)
        failed = fail(self.status, "boom")
        for terminal in (done, failed):
            with self.assertRaises(WorkflowError):
                advance(terminal, WorkflowStage.CREATING_BRANCH, "again")
            with self.assertRaises(WorkflowError):
                fail(terminal, "again")
            with self.assertRaises(WorkflowError):
                complete(terminal)

    def test_advance_cannot_enter_terminal_stage(self):
        with self.assertRaises(WorkflowError):
            advance(self.status, WorkflowStage.COMPLETED, "done")


class TestTicketHelpers(unittest.TestCase):
    """Severity mapping, area paths, tags and branch names."""

    def test_severity_to_priority(self):
        self.assertEqual(map_severity_to_priority(ErrorSeverity.CRITICAL), 1)
        self.assertEqual(map_severity_to_priority(ErrorSeverity.ERROR), 2)
        self.assertEqual(map_severity_to_priority(ErrorSeverity.WARNING), 3)
        self.assertEqual(map_severity_to_priority(ErrorSeverity.INFO), 4)
        self.assertEqual(map_severity_to_priority("critical"), 1)

    def test_severity_to_label(self):
        self.assertEqual(map_severity_to_label(ErrorSeverity.CRITICAL), "1 - Critical")
        self.assertEqual(map_severity_to_label(ErrorSeverity.INFO), "4 - Low")

    def test_unknown_severity_rejected(self):
        with self.assertRaises(ValueError):
            map_severity_to_priority("fatal")
        with self.assertRaises(ValueError):
            map_severity_to_priority(3)

    def test_severity_urgency_order(self):
        ordered = sorted(ErrorSeverity, key=lambda severity: severity.urgency, reverse=True)
        self.assertEqual(ordered, [ErrorSeverity.CRITICAL, ErrorSeverity.ERROR,
                                   ErrorSeverity.WARNING, ErrorSeverity.INFO])

    def test_area_path_from_source(self):
        self.assertEqual(determine_area_path("user-service", "anything", "Proj"), "Proj\\User Management")

    def test_area_path_source_checked_before_repository(self):
        self.assertEqual(determine_area_path("auth-service", "payment-service", "Proj"), "Proj\\Authentication")

    def test_area_path_from_repository_name(self):
        self.assertEqual(determine_area_path("misc", "acme-frontend", "Proj"), "Proj\\Frontend")

    def test_area_path_undefined_without_match_or_project(self):
        self.assertIsNone(determine_area_path("misc", "tooling", "Proj"))
        self.assertIsNone(determine_area_path("user-service", "user-service", None))

    def test_tags_omit_unknown_language(self):
        error = make_error()
        repository = RepositoryDescriptor("myorg", "user-service", "https://github.com/myorg/user-service", "main")
        known = ParsedStackTrace(raw="", frames=(), language=Language.PYTHON, error_message="x")
        unknown = ParsedStackTrace(raw="", frames=(), language=Language.UNKNOWN, error_message="x")

        self.assertEqual(build_tags(error, repository, known),
                         ["auto-fix", "fix-agent", "user-service", "production", "python"])
        self.assertEqual(build_tags(error, repository, unknown),
                         ["auto-fix", "fix-agent", "user-service", "production"])

    def test_branch_name(self):
        self.assertEqual(branch_name("err-001"), "bug/auto-fix-err-001")
        with self.assertRaises(ValueError):
            branch_name("../../etc")


class WorkflowTestCase(unittest.IsolatedAsyncioTestCase):
    """Builds a workflow over in-memory collaborators."""

    def make_workflow(self, errors=(), notifier=None, fix_agent=None, project="Proj",
                      fix_agent_timeout=5.0, fix_agent_grace=5.0):
        self.store = InMemoryAuditStore(errors)
        self.tracker = InMemoryIssueTracker()
        self.host = InMemorySourceControlHost(["myorg/user-service"])
        self.notifier = notifier or InMemoryChatNotifier()
        self.fix_agent = fix_agent or InMemoryFixAgent()
        self.statuses = []
        self.workflow = FixWorkflow(
            audit_store=self.store,
            issue_tracker=self.tracker,
            source_control=self.host,
            notifier=self.notifier,
            fix_agent=self.fix_agent,
            settings=WorkflowSettings(
                teams_team_id="team-1",
                teams_channel_id="channel-1",
                devops_project=project,
                fix_agent_timeout=fix_agent_timeout,
                fix_agent_grace=fix_agent_grace,
            ),
            status_listener=lambda error_id, status: self.statuses.append((error_id, status)),
        )
        return self.workflow


class TestProcessError(WorkflowTestCase):
    """Single-error runs."""

    async def test_end_to_end_success(self):
        error = make_error()
        workflow = self.make_workflow([error])

        result = await workflow.process_error(error)

        self.assertTrue(result.success)
        self.assertEqual(result.branch, "bug/auto-fix-err-001")
        self.assertEqual(result.repository, "myorg/user-service")
        self.assertTrue(result.pull_request_url)
        self.assertEqual(result.pull_request_number, 1)
        self.assertEqual(result.work_item_id, 1000)
        self.assertEqual(result.fix_run_id, "mock-run-1")
        self.assertIsNone(result.error_message)
        self.assertEqual([f.path for f in result.modified_files], ["/src/services/UserService.ts"])
        self.assertEqual(result.status.stage, WorkflowStage.COMPLETED)

        stages = [status.stage for _, status in self.statuses]
        self.assertEqual(stages, [
            WorkflowStage.INITIALIZING,
            WorkflowStage.PARSING_ERROR,
            WorkflowStage.FINDING_REPOSITORY,
            WorkflowStage.CREATING_WORK_ITEM,
            WorkflowStage.CREATING_BRANCH,
            WorkflowStage.RUNNING_FIX_AGENT,
            WorkflowStage.CREATING_PULL_REQUEST,
            WorkflowStage.NOTIFYING_TEAM,
            WorkflowStage.COMPLETED,
        ])
        progress = [status.progress for _, status in self.statuses]
        self.assertEqual(progress, sorted(progress))

    async def test_work_item_contents(self):
        error = make_error()
        workflow = self.make_workflow([error])

        await workflow.process_error(error)

        work_item = self.tracker.work_items[1000]
        self.assertEqual(work_item.title, "[Auto-Fix] TypeError: Cannot read property 'map' of undefined")
        self.assertEqual(work_item.priority, 2)
        self.assertEqual(work_item.severity, "2 - High")
        self.assertEqual(work_item.tags, ["auto-fix", "fix-agent", "user-service", "production", "typescript"])
        self.assertEqual(work_item.area_path, "Proj\\User Management")
        self.assertEqual(work_item.iteration_path, "Proj\\Backlog")
        self.assertEqual(work_item.related_error_id, "err-001")
        self.assertIn("/src/services/UserService.ts:45", work_item.description)
        self.assertIn("Environment: production", work_item.system_info)
        self.assertEqual(work_item.pull_request_url, "https://github.com/myorg/user-service/pull/1")
        self.assertEqual(len(self.tracker.comments[1000]), 1)
        self.assertIn("Automated fix PR created", self.tracker.comments[1000][0])

    async def test_pull_request_and_notification(self):
        error = make_error()
        workflow = self.make_workflow([error])

        result = await workflow.process_error(error)

        pull_request = self.host.pull_requests[0]
        self.assertTrue(pull_request["draft"])
        self.assertEqual(pull_request["head"], "bug/auto-fix-err-001")
        self.assertEqual(pull_request["base"], "main")
        self.assertTrue(pull_request["title"].startswith("[Auto-Fix] "))
        self.assertIn("Related work item: #1000", pull_request["body"])
        self.assertIn("myorg/user-service:bug/auto-fix-err-001", self.host.branches)

        message = self.notifier.last_message
        self.assertEqual(message.importance, "high")
        self.assertEqual(message.channel_id, "channel-1")
        self.assertIn(result.pull_request_url, message.message)
        self.assertIn("#1000", message.message)

        request = self.fix_agent.requests["mock-run-1"]
        self.assertEqual(request.repository, "myorg/user-service")
        self.assertEqual(request.branch, "bug/auto-fix-err-001")
        self.assertIn("#1000", request.context)

    async def test_error_record_updated(self):
        error = make_error()
        workflow = self.make_workflow([error])

        await workflow.process_error(error)

        stored = self.store.errors["err-001"]
        self.assertTrue(stored.processed)
        self.assertEqual(stored.metadata, {
            "work_item_id": 1000,
            "pull_request_url": "https://github.com/myorg/user-service/pull/1",
            "branch": "bug/auto-fix-err-001",
            "fix_run_id": "mock-run-1",
        })
        self.assertEqual(stored.work_item_id, 1000)
        self.assertEqual(stored.fix_branch, "bug/auto-fix-err-001")
        self.assertIsNotNone(stored.fixed_at)

    async def test_no_project_leaves_area_and_iteration_undefined(self):
        error = make_error()
        workflow = self.make_workflow([error], project=None)

        await workflow.process_error(error)

        work_item = self.tracker.work_items[1000]
        self.assertIsNone(work_item.area_path)
        self.assertIsNone(work_item.iteration_path)

    async def test_repository_not_found(self):
        error = make_error(repository=None, source="ghost", stack_trace="")
        workflow = self.make_workflow([error])

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertIn("Repository not found", result.error_message)
        self.assertEqual(result.repository, "")
        self.assertEqual(result.branch, "")
        self.assertIsNone(result.work_item_id)
        self.assertEqual(result.status.failed_stage, WorkflowStage.FINDING_REPOSITORY)
        self.assertEqual(self.tracker.work_items, {})
        self.assertFalse(self.store.errors[error.id].processed)

        message = self.notifier.last_message
        self.assertEqual(message.importance, "urgent")
        self.assertIn("finding_repository", message.message)

    async def test_fix_agent_failure(self):
        error = make_error()
        workflow = self.make_workflow([error], fix_agent=InMemoryFixAgent(simulate_failure=True))

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertTrue(result.error_message.startswith("Fix agent failed"))
        self.assertEqual(result.status.failed_stage, WorkflowStage.RUNNING_FIX_AGENT)
        self.assertEqual(result.repository, "myorg/user-service")
        self.assertEqual(result.branch, "bug/auto-fix-err-001")
        self.assertEqual(result.work_item_id, 1000)
        self.assertEqual(result.fix_run_id, "mock-run-1")
        self.assertIsNone(result.pull_request_url)
        self.assertEqual(self.host.pull_requests, [])
        self.assertEqual(self.tracker.work_items[1000].state, "New")
        self.assertFalse(self.store.errors[error.id].processed)

    async def test_fix_agent_timeout(self):
        error = make_error()
        workflow = self.make_workflow([error], fix_agent=InMemoryFixAgent(simulate_timeout=True))

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertIn("timed out", result.error_message)
        self.assertEqual(result.status.failed_stage, WorkflowStage.RUNNING_FIX_AGENT)

    async def test_unresponsive_fix_agent_is_abandoned(self):
        error = make_error()
        workflow = self.make_workflow(
            [error],
            fix_agent=InMemoryFixAgent(simulated_delay=10.0),
            fix_agent_timeout=0.05,
            fix_agent_grace=0.05,
        )

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertIn("timed out", result.error_message)
        self.assertEqual(result.status.failed_stage, WorkflowStage.RUNNING_FIX_AGENT)
        self.assertEqual(result.fix_run_id, "mock-run-1")
        self.assertEqual(self.host.pull_requests, [])

    async def test_unusable_error_id_fails_before_ticket(self):
        error = make_error(error_id="audit:2024-01-15:42")
        workflow = self.make_workflow([error])

        first = await workflow.process_error(error)
        second = await workflow.process_error(error)

        for result in (first, second):
            self.assertFalse(result.success)
            self.assertEqual(result.status.failed_stage, WorkflowStage.PARSING_ERROR)
            self.assertIsNone(result.work_item_id)
        self.assertEqual(self.tracker.work_items, {})
        self.assertEqual(self.host.lookups, [])
        self.assertFalse(self.store.errors[error.id].processed)

    async def test_branch_conflict_fails_run(self):
        error = make_error()
        workflow = self.make_workflow([error])
        await self.host.create_branch("myorg", "user-service", "bug/auto-fix-err-001")

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertEqual(result.status.failed_stage, WorkflowStage.CREATING_BRANCH)
        self.assertEqual(result.branch, "")
        self.assertEqual(result.work_item_id, 1000)

    async def test_notification_failures_do_not_escape(self):
        error = make_error()
        workflow = self.make_workflow([error], notifier=InMemoryChatNotifier(fail_sends=True))

        result = await workflow.process_error(error)

        self.assertFalse(result.success)
        self.assertEqual(result.status.failed_stage, WorkflowStage.NOTIFYING_TEAM)
        self.assertTrue(result.pull_request_url)
        self.assertEqual(self.notifier.messages, [])

    async def test_process_error_by_id(self):
        workflow = self.make_workflow([make_error()])

        self.assertIsNone(await workflow.process_error_by_id("missing"))
        result = await workflow.process_error_by_id("err-001")
        self.assertTrue(result.success)


class TestBatchProcessing(WorkflowTestCase):
    """Batch runs over unprocessed errors."""

    async def test_failure_is_isolated(self):
        errors = [
            make_error("err-a"),
            make_error("err-b", repository=None, source="ghost", stack_trace=""),
            make_error("err-c"),
        ]
        workflow = self.make_workflow(errors)

        results = await workflow.process_unprocessed_errors()

        self.assertEqual([result.error_id for result in results], ["err-a", "err-b", "err-c"])
        self.assertEqual([result.success for result in results], [True, False, True])
        self.assertEqual(sum(1 for result in results if not result.success), 1)
        self.assertEqual(results[0].status.stage, WorkflowStage.COMPLETED)
        self.assertEqual(results[2].status.stage, WorkflowStage.COMPLETED)
        self.assertEqual(len(self.tracker.work_items), 2)
        self.assertTrue(self.store.errors["err-a"].processed)
        self.assertFalse(self.store.errors["err-b"].processed)
        self.assertTrue(self.store.errors["err-c"].processed)

    async def test_default_filter_skips_low_severity(self):
        errors = [
            make_error("err-warn", severity=ErrorSeverity.WARNING),
            make_error("err-crit", severity=ErrorSeverity.CRITICAL),
        ]
        workflow = self.make_workflow(errors)

        results = await workflow.process_unprocessed_errors()

        self.assertEqual([result.error_id for result in results], ["err-crit"])

    async def test_explicit_filter(self):
        errors = [
            make_error("err-1", severity=ErrorSeverity.WARNING),
            make_error("err-2", severity=ErrorSeverity.INFO),
        ]
        workflow = self.make_workflow(errors)

        results = await workflow.process_unprocessed_errors(AuditErrorFilter(limit=1))

        self.assertEqual([result.error_id for result in results], ["err-1"])

    async def test_processed_errors_are_not_picked_up_again(self):
        workflow = self.make_workflow([make_error()])

        first = await workflow.process_unprocessed_errors()
        second = await workflow.process_unprocessed_errors()

        self.assertEqual(len(first), 1)
        self.assertEqual(second, [])


class TestFixRunControl(WorkflowTestCase):
    """Run status and cancellation pass-through."""

    async def test_cancel_fix_run(self):
        workflow = self.make_workflow()
        run_id = await self.fix_agent.submit_fix(self._request())

        await workflow.cancel_fix_run(run_id)
        status = await workflow.get_fix_run_status(run_id)

        self.assertEqual(status.state.value, "cancelled")
        self.assertIsNotNone(status.completed_at)

    def _request(self):
        trace = ParsedStackTrace(raw="", frames=(), language=Language.UNKNOWN, error_message="x")
        return FixRequest(error_message="x", stack_trace=trace, repository="myorg/user-service", branch="b")


if __name__ == "__main__":
    unittest.main()
