"""
Configuration constants for the Error Monitor.

This module centralizes the fixed tables the fix workflow relies on
(severity mappings, area keywords, vendor markers) along with timeouts and
batch defaults, so the decision rules stay in one place.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class SeverityConstants:
    """Fixed severity → work item priority/label mapping."""

    PRIORITY: Dict[str, int] = field(default_factory=lambda: {
        "critical": 1,
        "error": 2,
        "warning": 3,
        "info": 4,
    })
    LABEL: Dict[str, str] = field(default_factory=lambda: {
        "critical": "1 - Critical",
        "error": "2 - High",
        "warning": "3 - Medium",
        "info": "4 - Low",
    })


@dataclass(frozen=True)
class WorkflowConstants:
    """Constants for the fix workflow."""

    BRANCH_PREFIX: str = "bug/auto-fix-"
    AUTO_FIX_TAG: str = "auto-fix"
    AGENT_TAG: str = "fix-agent"
    TITLE_PREFIX: str = "[Auto-Fix]"
    MAX_BUG_TITLE_LENGTH: int = 100
    MAX_PR_TITLE_LENGTH: int = 80
    BACKLOG_ITERATION: str = "Backlog"

    # Progress percentage reported when a stage is entered
    STAGE_PROGRESS: Dict[str, int] = field(default_factory=lambda: {
        "initializing": 0,
        "parsing_error": 10,
        "finding_repository": 15,
        "creating_work_item": 20,
        "creating_branch": 40,
        "running_fix_agent": 50,
        "creating_pull_request": 80,
        "notifying_team": 90,
        "completed": 100,
    })

    # Keyword → area, checked in order against the source, then the repo name
    AREA_KEYWORDS: Tuple[Tuple[str, str], ...] = (
        ("user-service", "User Management"),
        ("auth-service", "Authentication"),
        ("api-gateway", "API"),
        ("report-service", "Reporting"),
        ("notification-service", "Notifications"),
        ("payment-service", "Payments"),
        ("order-service", "Orders"),
        ("inventory-service", "Inventory"),
        ("frontend", "Frontend"),
        ("web", "Frontend"),
        ("mobile", "Mobile"),
        ("backend", "Backend"),
        ("infrastructure", "Infrastructure"),
        ("devops", "DevOps"),
    )


@dataclass(frozen=True)
class FixAgentConstants:
    """Timeouts for fix agent runs."""

    DEFAULT_TIMEOUT_SECONDS: float = 300.0
    POLL_INTERVAL_SECONDS: float = 5.0
    DEFAULT_RUN_NAME_PREFIX: str = "auto-fix-"


@dataclass(frozen=True)
class BatchConstants:
    """Defaults for one processing cycle."""

    DEFAULT_SEVERITIES: Tuple[str, ...] = ("critical", "error")
    DEFAULT_MAX_ERRORS_PER_CYCLE: int = 10
    DEFAULT_POLL_INTERVAL_SECONDS: float = 60.0


@dataclass(frozen=True)
class StackTraceConstants:
    """Markers used to separate first-party frames from vendor code."""

    VENDOR_PATH_MARKERS: Tuple[str, ...] = (
        r"node_modules",
        r"site-packages",
        r"vendor",
        r"\.gem",
        r"dist-packages",
        r"internal/",
        r"<anonymous>",
        r"native",
    )
    # JVM runtime packages, matched against the class qualifier
    VENDOR_QUALIFIER_MARKERS: Tuple[str, ...] = (
        r"^java\.",
        r"^javax\.",
        r"^jdk\.",
        r"^sun\.",
    )
    SEARCH_FRAME_LIMIT: int = 3
    PLACEHOLDER_DEFAULT_BRANCH: str = "main"


# Global constants instances
SEVERITY = SeverityConstants()
WORKFLOW = WorkflowConstants()
FIX_AGENT = FixAgentConstants()
BATCH = BatchConstants()
STACK_TRACE = StackTraceConstants()
