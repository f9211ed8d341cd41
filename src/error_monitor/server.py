"""
Error Monitor server.

Wires configuration, adapters and services together and exposes them in
three ways: a single processing cycle, a polling loop, and an MCP server
(FastMCP) whose tools let an assistant drive the fix workflow by hand.
"""

import asyncio
import sys
from typing import Any, Dict, List, Optional
from loguru import logger

from mcp.server.fastmcp import FastMCP

from .adapters import (
    AzureDevOpsIssueTracker,
    DynamoDBAuditStore,
    FixAgentClient,
    GitHubSourceControlHost,
    InMemoryAuditStore,
    InMemoryChatNotifier,
    InMemoryFixAgent,
    InMemoryIssueTracker,
    InMemorySourceControlHost,
    TeamsNotifier,
)
from .config import Config
from .exceptions import ConfigurationError, ErrorMonitorError
from .models import AuditErrorFilter, ErrorSeverity, FixResult, WorkflowStatus
from .services import FixWorkflow, RepositoryResolver, StackTraceParser

# Repositories the in-memory host knows about in mock mode
MOCK_REPOSITORIES = ("myorg/user-service", "myorg/report-service")


def create_adapters(config: Config) -> Dict[str, Any]:
    """Build the five collaborators, in-memory ones when mock mode is on."""
    if config.use_mock_adapters:
        logger.info("Using in-memory adapters")
        return {
            "audit_store": InMemoryAuditStore(),
            "issue_tracker": InMemoryIssueTracker(),
            "source_control": InMemorySourceControlHost(MOCK_REPOSITORIES),
            "notifier": InMemoryChatNotifier(),
            "fix_agent": InMemoryFixAgent(simulated_delay=0.5),
        }

    logger.info("Using production adapters")
    return {
        "audit_store": DynamoDBAuditStore(config.aws_region, config.dynamodb_table_name),
        "issue_tracker": AzureDevOpsIssueTracker(
            config.devops_organization, config.devops_project, config.devops_pat
        ),
        "source_control": GitHubSourceControlHost(config.github_token, config.github_organization),
        "notifier": TeamsNotifier(config.teams_access_token),
        "fix_agent": FixAgentClient(
            api_key=config.fix_agent_api_key,
            base_url=config.fix_agent_base_url,
            environment_id=config.fix_agent_environment_id,
        ),
    }


class ErrorMonitorServer:
    """Main server class: owns the configuration, adapters and services."""

    def __init__(
        self,
        env_file: Optional[str] = None,
        use_mock: Optional[bool] = None,
        config: Optional[Config] = None,
        adapters: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize the Error Monitor server.

        Args:
            env_file: Optional path to environment file
            use_mock: Force in-memory adapters on or off
            config: Ready-made configuration (skips environment loading)
            adapters: Ready-made collaborators (skips create_adapters)
        """
        self.mcp = FastMCP("error-monitor")
        self.workflow_statuses: Dict[str, WorkflowStatus] = {}
        self._stop_event: Optional[asyncio.Event] = None

        if config is None:
            try:
                config = Config(env_file, use_mock=use_mock)
                logger.info("✅ Configuration loaded successfully")
            except ConfigurationError as e:
                logger.error(f"❌ Configuration error: {e.message}")
                for var in e.details.get("missing_environment_variables", []):
                    logger.error(f"  - {var}")
                sys.exit(1)
        self.config = config

        self.adapters = adapters or create_adapters(config)
        self._initialize_services()
        self._register_tools()
        logger.info("🚀 Error Monitor server initialized")

    def _initialize_services(self) -> None:
        """Initialize services with explicit dependencies."""
        try:
            self.parser = StackTraceParser()
            self.resolver = RepositoryResolver(
                self.adapters["source_control"],
                self.config.repository_mappings,
            )
            self.workflow = FixWorkflow(
                audit_store=self.adapters["audit_store"],
                issue_tracker=self.adapters["issue_tracker"],
                source_control=self.adapters["source_control"],
                notifier=self.adapters["notifier"],
                fix_agent=self.adapters["fix_agent"],
                settings=self.config.workflow_settings(),
                parser=self.parser,
                resolver=self.resolver,
                status_listener=self._record_status,
            )
        except KeyError as e:
            raise ErrorMonitorError(f"Missing adapter: {e}", cause=e)

    def _record_status(self, error_id: str, status: WorkflowStatus) -> None:
        self.workflow_statuses[error_id] = status

    def _register_tools(self) -> None:
        """Register all MCP tools with the server."""
        self._register_workflow_tools()
        self._register_analysis_tools()
        self._register_fix_run_tools()
        logger.info("✅ All MCP tools registered successfully")

    def _register_workflow_tools(self) -> None:
        workflow = self.workflow

        @self.mcp.tool()
        async def process_unprocessed_errors(
            severities: Optional[List[str]] = None,
            source: Optional[str] = None,
            limit: Optional[int] = None
        ) -> dict:
            """Run the fix workflow for every matching unprocessed error."""
            try:
                error_filter = workflow.default_filter()
                if severities:
                    error_filter.severities = [ErrorSeverity.parse(value) for value in severities]
                if source:
                    error_filter.source = source
                if limit:
                    error_filter.limit = limit
                results = await workflow.process_unprocessed_errors(error_filter)
                return {
                    "processed": len(results),
                    "succeeded": sum(1 for result in results if result.success),
                    "results": [result.to_dict() for result in results],
                }
            except Exception as e:
                logger.error(f"Error in process_unprocessed_errors: {e}")
                return {"success": False, "error": str(e)}

        @self.mcp.tool()
        async def process_error(error_id: str) -> dict:
            """Run the fix workflow for one error from the audit log."""
            try:
                result = await workflow.process_error_by_id(error_id)
                if result is None:
                    return {"success": False, "error": f"Error '{error_id}' not found"}
                return result.to_dict()
            except Exception as e:
                logger.error(f"Error in process_error: {e}")
                return {"success": False, "error": str(e)}

        @self.mcp.tool()
        async def get_workflow_status(error_id: str) -> dict:
            """Latest workflow status recorded for an error in this process."""
            status = self.workflow_statuses.get(error_id)
            if status is None:
                return {"success": False, "error": f"No workflow has run for '{error_id}'"}
            return status.to_dict()

    def _register_analysis_tools(self) -> None:
        parser = self.parser
        resolver = self.resolver
        audit_store = self.adapters["audit_store"]

        @self.mcp.tool()
        async def parse_stack_trace(stack_trace: str, message: Optional[str] = None) -> dict:
            """Parse a raw stack trace into language, error type and frames."""
            return parser.parse(stack_trace, message).to_dict()

        @self.mcp.tool()
        async def find_repository(error_id: str) -> dict:
            """Resolve the repository that owns the code behind an error."""
            try:
                error = await audit_store.get_error_by_id(error_id)
                if error is None:
                    return {"success": False, "error": f"Error '{error_id}' not found"}
                repository = await resolver.resolve(error, parser.parse(error.stack_trace, error.message))
                if repository is None:
                    return {"success": False, "error": "Repository not found"}
                return {"success": True, "repository": repository.to_dict()}
            except Exception as e:
                logger.error(f"Error in find_repository: {e}")
                return {"success": False, "error": str(e)}

        @self.mcp.tool()
        async def get_error_stats() -> dict:
            """Counts of unprocessed errors by severity and source."""
            try:
                stats = await audit_store.get_error_stats()
                return stats.to_dict()
            except Exception as e:
                logger.error(f"Error in get_error_stats: {e}")
                return {"success": False, "error": str(e)}

    def _register_fix_run_tools(self) -> None:
        workflow = self.workflow

        @self.mcp.tool()
        async def get_fix_run_status(run_id: str) -> dict:
            """Poll the status of a fix agent run."""
            try:
                status = await workflow.get_fix_run_status(run_id)
                return status.to_dict()
            except Exception as e:
                logger.error(f"Error in get_fix_run_status: {e}")
                return {"success": False, "error": str(e)}

        @self.mcp.tool()
        async def cancel_fix_run(run_id: str) -> dict:
            """Cancel an in-flight fix agent run."""
            try:
                await workflow.cancel_fix_run(run_id)
                return {"success": True, "run_id": run_id}
            except Exception as e:
                logger.error(f"Error in cancel_fix_run: {e}")
                return {"success": False, "error": str(e)}

    async def run_once(self, error_filter: Optional[AuditErrorFilter] = None) -> List[FixResult]:
        """Process one batch of unprocessed errors and log a summary per error."""
        results = await self.workflow.process_unprocessed_errors(error_filter)
        for result in results:
            if result.success:
                logger.info(f"✅ {result.error_id}: {result.pull_request_url}")
            else:
                logger.warning(f"❌ {result.error_id}: {result.error_message}")
        return results

    async def run_continuous(self) -> None:
        """Poll the audit log until stop() is called."""
        self._stop_event = asyncio.Event()
        logger.info(f"Polling for errors every {self.config.poll_interval:g}s")

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except ErrorMonitorError as e:
                logger.error(f"Processing cycle failed: {e.message}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Polling stopped")

    def stop(self) -> None:
        """Ask the polling loop to exit after the current cycle."""
        if self._stop_event is not None:
            self._stop_event.set()

    def run(self, transport: str = "stdio") -> None:
        """Run the MCP server."""
        logger.info(f"Starting MCP server with {transport} transport")
        self.mcp.run(transport=transport)

