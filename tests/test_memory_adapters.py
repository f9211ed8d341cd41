#!/usr/bin/env python3
"""
Tests for the in-memory collaborators used in mock mode.
"""

import os
import sys
import unittest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from error_monitor.adapters.memory import (
    InMemoryAuditStore,
    InMemoryChatNotifier,
    InMemoryFixAgent,
    InMemoryIssueTracker,
    InMemorySourceControlHost,
    sample_errors,
)
from error_monitor.exceptions import NotificationError, SourceControlError, WorkItemError
from error_monitor.models import (
    AuditErrorFilter,
    CreateBugInput,
    ErrorSeverity,
    FixRequest,
    FixRunState,
    Language,
    ParsedStackTrace,
)


class TestInMemoryAuditStore(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.store = InMemoryAuditStore()

    async def test_seeded_with_samples(self):
        errors = await self.store.get_unprocessed_errors()
        self.assertEqual([error.id for error in errors], ["err-001", "err-002"])

    async def test_filter_by_severity_and_source(self):
        critical = await self.store.get_unprocessed_errors(AuditErrorFilter(severities=[ErrorSeverity.CRITICAL]))
        by_source = await self.store.get_unprocessed_errors(AuditErrorFilter(source="user-service"))

        self.assertEqual([error.id for error in critical], ["err-002"])
        self.assertEqual([error.id for error in by_source], ["err-001"])

    async def test_mark_as_processed_merges_metadata(self):
        await self.store.mark_as_processed("err-001", {"branch": "b"})
        await self.store.mark_as_processed("err-001", {"work_item_id": 1})

        error = await self.store.get_error_by_id("err-001")
        self.assertTrue(error.processed)
        self.assertEqual(error.metadata, {"branch": "b", "work_item_id": 1})
        self.assertEqual(len(await self.store.get_unprocessed_errors()), 1)

    async def test_stats(self):
        stats = await self.store.get_error_stats()

        self.assertEqual(stats.total_unprocessed, 2)
        self.assertEqual(stats.by_severity, {"error": 1, "critical": 1})

    def test_empty_store(self):
        self.assertEqual(InMemoryAuditStore([]).errors, {})
        self.assertEqual(len(sample_errors()), 2)


class TestInMemoryIssueTracker(unittest.IsolatedAsyncioTestCase):

    async def test_work_item_lifecycle(self):
        tracker = InMemoryIssueTracker()
        first = await tracker.create_bug(CreateBugInput(title="A", description="a", related_error_id="e1"))
        second = await tracker.create_bug(CreateBugInput(title="B", description="b", related_error_id="e2"))

        self.assertEqual((first.id, second.id), (1000, 1001))

        updated = await tracker.update_bug(first.id, {"title": "A2", "id": 5, "related_error_id": "x"})
        self.assertEqual(updated.title, "A2")
        self.assertEqual(updated.id, 1000)
        self.assertEqual(updated.related_error_id, "e1")

        await tracker.close_work_item(first.id, "Fixed")
        self.assertEqual((await tracker.get_work_item(first.id)).state, "Closed")
        self.assertEqual(tracker.comments[first.id], ["Closed: Fixed"])

    async def test_unknown_work_item(self):
        tracker = InMemoryIssueTracker()

        self.assertIsNone(await tracker.get_work_item(1))
        with self.assertRaises(WorkItemError):
            await tracker.add_comment(1, "hello")


class TestInMemorySourceControlHost(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.host = InMemorySourceControlHost(["MyOrg/User-Service"])

    async def test_lookup_is_case_insensitive(self):
        record = await self.host.get_repository("myorg", "user-service")

        self.assertEqual(record.full_name, "MyOrg/User-Service")
        self.assertIsNone(await self.host.get_repository("myorg", "missing"))
        self.assertEqual(self.host.lookups, ["myorg/user-service", "myorg/missing"])

    async def test_branches_and_commits(self):
        await self.host.create_branch("MyOrg", "User-Service", "feature")
        with self.assertRaises(SourceControlError):
            await self.host.create_branch("MyOrg", "User-Service", "feature")

        sha = await self.host.push_files("MyOrg", "User-Service", "feature",
                                         [{"path": "a.txt", "content": "hi"}], "Add a")
        contents = await self.host.get_file_contents("MyOrg", "User-Service", "a.txt", ref="feature")
        commit = await self.host.get_latest_commit("MyOrg", "User-Service", "feature")

        self.assertEqual(contents.content, "hi")
        self.assertEqual(commit.sha, sha)
        self.assertIsNone(await self.host.get_latest_commit("MyOrg", "User-Service", "nope"))

    async def test_search(self):
        hits = await self.host.search_repositories("user-service Invoice")

        self.assertEqual([hit.full_name for hit in hits], ["MyOrg/User-Service"])
        self.assertEqual(await self.host.search_repositories("billing"), [])


class TestInMemoryChatNotifier(unittest.IsolatedAsyncioTestCase):

    async def test_records_messages(self):
        notifier = InMemoryChatNotifier()
        await notifier.send_channel_message("t", "c", "hello", importance="high")

        self.assertEqual(notifier.last_message.message, "hello")
        self.assertEqual(notifier.last_message.importance, "high")

    async def test_failing_notifier(self):
        with self.assertRaises(NotificationError):
            await InMemoryChatNotifier(fail_sends=True).send_channel_message("t", "c", "hello")


class TestInMemoryFixAgent(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.request = FixRequest(
            error_message="Boom",
            stack_trace=ParsedStackTrace(raw="", frames=(), language=Language.UNKNOWN, error_message="Boom"),
            repository="myorg/app",
            branch="bug/auto-fix-1",
        )

    async def test_successful_run(self):
        agent = InMemoryFixAgent()
        run_id = await agent.submit_fix(self.request)

        result = await agent.wait_for_completion(run_id, timeout=1)

        self.assertTrue(result.success)
        self.assertEqual(result.files_modified, ["src/unknown.ts"])
        self.assertEqual((await agent.get_run_status(run_id)).state, FixRunState.COMPLETED)

    async def test_cancel_after_completion_is_ignored(self):
        agent = InMemoryFixAgent()
        run_id = await agent.submit_fix(self.request)
        await agent.wait_for_completion(run_id, timeout=1)

        await agent.cancel_run(run_id)

        self.assertEqual((await agent.get_run_status(run_id)).state, FixRunState.COMPLETED)

    async def test_cancelled_run(self):
        agent = InMemoryFixAgent()
        run_id = await agent.submit_fix(self.request)
        await agent.cancel_run(run_id)

        result = await agent.wait_for_completion(run_id, timeout=1)

        self.assertFalse(result.success)
        self.assertEqual(result.error, "Run cancelled")

    async def test_unknown_run(self):
        status = await InMemoryFixAgent().get_run_status("nope")
        self.assertEqual(status.state, FixRunState.FAILED)


if __name__ == "__main__":
    unittest.main()
