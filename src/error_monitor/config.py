"""
Configuration management for the Error Monitor.

Handles environment variables, validation, and configuration defaults. A
``Config`` is built once at startup and handed to the services that need it;
nothing reads the environment after construction.
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional, Any
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger

from .constants import BATCH, FIX_AGENT
from .exceptions import ConfigurationError
from .validation import InputValidator


@dataclass(frozen=True)
class WorkflowSettings:
    """Settings the fix workflow needs, passed explicitly into its constructor."""
    teams_team_id: str
    teams_channel_id: str
    devops_project: Optional[str] = None
    fix_agent_environment_id: Optional[str] = None
    fix_agent_timeout: float = FIX_AGENT.DEFAULT_TIMEOUT_SECONDS
    # Extra time past fix_agent_timeout before an unresponsive agent is abandoned
    fix_agent_grace: float = FIX_AGENT.POLL_INTERVAL_SECONDS
    max_errors_per_cycle: int = BATCH.DEFAULT_MAX_ERRORS_PER_CYCLE


class Config:
    """Configuration manager for the Error Monitor."""

    # Values used when running against the in-memory adapters
    MOCK_VALUES = {
        "AWS_REGION": "us-east-1",
        "DYNAMODB_TABLE_NAME": "mock-audit-log",
        "AZURE_DEVOPS_ORG": "mock-org",
        "AZURE_DEVOPS_PROJECT": "mock-project",
        "AZURE_DEVOPS_PAT": "mock-pat",
        "GITHUB_TOKEN": "mock-token",
        "GITHUB_ORG": "mock-org",
        "TEAMS_ACCESS_TOKEN": "mock-token",
        "TEAMS_TEAM_ID": "mock-team",
        "TEAMS_CHANNEL_ID": "mock-channel",
        "FIX_AGENT_API_KEY": "mock-api-key",
        "FIX_AGENT_BASE_URL": "http://localhost:8080/api/v1",
        "FIX_AGENT_ENVIRONMENT_ID": "mock-env",
        "POLL_INTERVAL": "5",
        "LOG_LEVEL": "DEBUG",
    }

    def __init__(
        self,
        env_file: Optional[str] = None,
        use_mock: Optional[bool] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize configuration with environment variables.

        Args:
            env_file: Optional path to .env file
            use_mock: Force mock mode on or off (default: USE_MOCK_ADAPTERS)
            environ: Variables to read instead of os.environ
        """
        if environ is None:
            if env_file and Path(env_file).exists():
                load_dotenv(env_file)
            else:
                load_dotenv()
            environ = dict(os.environ)
        self._env = environ

        if use_mock is None:
            use_mock = self._env.get("USE_MOCK_ADAPTERS", "false").lower() == "true"
        self.use_mock_adapters = use_mock

        # Required environment variables
        self._required_vars = {
            "AWS_REGION": "AWS region of the audit log table",
            "DYNAMODB_TABLE_NAME": "DynamoDB audit log table name",
            "AZURE_DEVOPS_ORG": "Azure DevOps organization",
            "AZURE_DEVOPS_PROJECT": "Azure DevOps project",
            "AZURE_DEVOPS_PAT": "Azure DevOps personal access token",
            "GITHUB_TOKEN": "GitHub personal access token for repository access",
            "TEAMS_ACCESS_TOKEN": "Microsoft Graph access token for Teams",
            "TEAMS_TEAM_ID": "Teams team ID for notifications",
            "TEAMS_CHANNEL_ID": "Teams channel ID for notifications",
            "FIX_AGENT_API_KEY": "API key for the fix agent service",
            "FIX_AGENT_BASE_URL": "Base URL of the fix agent API",
        }

        self._validate_and_load()

    @classmethod
    def mock(cls) -> "Config":
        """Build a configuration for the in-memory adapters."""
        return cls(use_mock=True, environ=dict(cls.MOCK_VALUES))

    def _get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        value = self._env.get(name)
        if value:
            return value
        if self.use_mock_adapters and name in self.MOCK_VALUES:
            return self.MOCK_VALUES[name]
        return default

    def _validate_and_load(self) -> None:
        """Validate required variables and load all configuration."""
        if not self.use_mock_adapters:
            missing_vars = [
                f"{var_name} ({description})"
                for var_name, description in self._required_vars.items()
                if not self._env.get(var_name)
            ]
            if missing_vars:
                raise ConfigurationError(
                    f"Missing required environment variables: {', '.join([var.split(' (')[0] for var in missing_vars])}",
                    missing_vars=missing_vars,
                    details={
                        "missing_variables": missing_vars,
                        "suggestion": "Please set these environment variables in your .env file or set USE_MOCK_ADAPTERS=true"
                    }
                )

        try:
            self._load_values()
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}", cause=e)
        logger.info("Configuration loaded and validated successfully")

    def _load_values(self) -> None:
        """Load all configuration values."""
        # AWS / audit log
        self.aws_region = self._get("AWS_REGION")
        self.dynamodb_table_name = self._get("DYNAMODB_TABLE_NAME")

        # Azure DevOps
        self.devops_organization = self._get("AZURE_DEVOPS_ORG")
        self.devops_project = self._get("AZURE_DEVOPS_PROJECT")
        self.devops_pat = self._get("AZURE_DEVOPS_PAT")

        # GitHub
        self.github_token = self._get("GITHUB_TOKEN")
        self.github_organization = self._get("GITHUB_ORG")

        # Microsoft Teams
        self.teams_access_token = self._get("TEAMS_ACCESS_TOKEN")
        self.teams_team_id = self._get("TEAMS_TEAM_ID", "")
        self.teams_channel_id = self._get("TEAMS_CHANNEL_ID", "")

        # Fix agent
        self.fix_agent_api_key = self._get("FIX_AGENT_API_KEY")
        self.fix_agent_base_url = self._get("FIX_AGENT_BASE_URL")
        self.fix_agent_environment_id = self._get("FIX_AGENT_ENVIRONMENT_ID")
        self.fix_agent_timeout = float(
            self._get("FIX_AGENT_TIMEOUT", str(FIX_AGENT.DEFAULT_TIMEOUT_SECONDS))
        )

        # Processing loop
        self.poll_interval = float(
            self._get("POLL_INTERVAL", str(BATCH.DEFAULT_POLL_INTERVAL_SECONDS))
        )
        self.max_errors_per_cycle = int(
            self._get("MAX_ERRORS_PER_CYCLE", str(BATCH.DEFAULT_MAX_ERRORS_PER_CYCLE))
        )

        # Static source → repository table
        self.repository_mappings = InputValidator.parse_repository_mappings(
            self._get("REPOSITORY_MAPPINGS")
        )

        # Logging configuration
        self.log_level = self._get("LOG_LEVEL", "INFO").upper()

    def workflow_settings(self) -> WorkflowSettings:
        """Settings handed to the fix workflow."""
        return WorkflowSettings(
            teams_team_id=self.teams_team_id,
            teams_channel_id=self.teams_channel_id,
            devops_project=self.devops_project,
            fix_agent_environment_id=self.fix_agent_environment_id,
            fix_agent_timeout=self.fix_agent_timeout,
            max_errors_per_cycle=self.max_errors_per_cycle,
        )

    def get_status(self) -> Dict[str, Any]:
        """
        Get configuration status without secrets.

        Returns:
            Dictionary with configuration status and details
        """
        return {
            "mode": "mock" if self.use_mock_adapters else "production",
            "audit_log": {
                "region": self.aws_region,
                "table": self.dynamodb_table_name,
            },
            "devops": {
                "organization": self.devops_organization,
                "project": self.devops_project,
            },
            "github": {
                "organization": self.github_organization,
                "token_configured": bool(self.github_token),
            },
            "fix_agent": {
                "base_url": self.fix_agent_base_url,
                "environment_id": self.fix_agent_environment_id,
                "timeout": self.fix_agent_timeout,
            },
            "processing": {
                "poll_interval": self.poll_interval,
                "max_errors_per_cycle": self.max_errors_per_cycle,
                "repository_mappings": len(self.repository_mappings),
            },
            "log_level": self.log_level,
        }

    def __repr__(self) -> str:
        """String representation of configuration (without sensitive data)."""
        return (
            f"Config("
            f"mock={self.use_mock_adapters}, "
            f"table={self.dynamodb_table_name}, "
            f"project={self.devops_project}, "
            f"max_errors_per_cycle={self.max_errors_per_cycle}"
            f")"
        )
