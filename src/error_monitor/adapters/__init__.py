"""
Adapters for the external systems the Error Monitor talks to.

Production adapters wrap DynamoDB, Azure DevOps, GitHub, Microsoft Teams and
the fix agent API; the in-memory adapters stand in for all of them in mock
mode and in tests.
"""

from .base import AuditStore, IssueTracker, SourceControlHost, ChatNotifier, FixAgent
from .memory import (
    InMemoryAuditStore,
    InMemoryIssueTracker,
    InMemorySourceControlHost,
    InMemoryChatNotifier,
    InMemoryFixAgent,
)
from .dynamodb_store import DynamoDBAuditStore
from .azure_devops import AzureDevOpsIssueTracker
from .github_host import GitHubSourceControlHost
from .teams import TeamsNotifier
from .fix_agent_client import FixAgentClient

__all__ = [
    # Contracts
    "AuditStore",
    "IssueTracker",
    "SourceControlHost",
    "ChatNotifier",
    "FixAgent",
    # In-memory
    "InMemoryAuditStore",
    "InMemoryIssueTracker",
    "InMemorySourceControlHost",
    "InMemoryChatNotifier",
    "InMemoryFixAgent",
    # Production
    "DynamoDBAuditStore",
    "AzureDevOpsIssueTracker",
    "GitHubSourceControlHost",
    "TeamsNotifier",
    "FixAgentClient",
]
