#!/usr/bin/env python3
"""
Tests for configuration loading and input validation helpers.
"""

import os
import sys
import unittest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from error_monitor.config import Config, WorkflowSettings
from error_monitor.exceptions import ConfigurationError
from error_monitor.validation import InputValidator

PRODUCTION_ENV = {
    "AWS_REGION": "eu-west-1",
    "DYNAMODB_TABLE_NAME": "audit-log",
    "AZURE_DEVOPS_ORG": "acme",
    "AZURE_DEVOPS_PROJECT": "Platform",
    "AZURE_DEVOPS_PAT": "pat",
    "GITHUB_TOKEN": "ghp_token",
    "TEAMS_ACCESS_TOKEN": "graph-token",
    "TEAMS_TEAM_ID": "team-1",
    "TEAMS_CHANNEL_ID": "channel-1",
    "FIX_AGENT_API_KEY": "agent-key",
    "FIX_AGENT_BASE_URL": "https://agent.example.com/api/v1",
}


class TestConfig(unittest.TestCase):
    """Environment driven configuration."""

    def test_missing_required_variables(self):
        env = dict(PRODUCTION_ENV)
        del env["GITHUB_TOKEN"]
        del env["TEAMS_CHANNEL_ID"]

        with self.assertRaises(ConfigurationError) as ctx:
            Config(environ=env)

        self.assertIn("GITHUB_TOKEN", ctx.exception.message)
        self.assertIn("TEAMS_CHANNEL_ID", ctx.exception.message)
        self.assertEqual(len(ctx.exception.details["missing_environment_variables"]), 2)

    def test_production_values(self):
        config = Config(environ=dict(PRODUCTION_ENV, FIX_AGENT_TIMEOUT="120", MAX_ERRORS_PER_CYCLE="3"))

        self.assertFalse(config.use_mock_adapters)
        self.assertEqual(config.aws_region, "eu-west-1")
        self.assertEqual(config.devops_project, "Platform")
        self.assertIsNone(config.github_organization)
        self.assertEqual(config.fix_agent_timeout, 120.0)
        self.assertEqual(config.max_errors_per_cycle, 3)
        self.assertEqual(config.poll_interval, 60.0)
        self.assertEqual(config.log_level, "INFO")

    def test_invalid_number_is_configuration_error(self):
        with self.assertRaises(ConfigurationError):
            Config(environ=dict(PRODUCTION_ENV, MAX_ERRORS_PER_CYCLE="many"))

    def test_mock_mode_needs_no_environment(self):
        config = Config.mock()

        self.assertTrue(config.use_mock_adapters)
        self.assertEqual(config.teams_team_id, "mock-team")
        self.assertEqual(config.poll_interval, 5.0)
        self.assertEqual(config.log_level, "DEBUG")

    def test_mock_mode_from_environment_flag(self):
        config = Config(environ={"USE_MOCK_ADAPTERS": "true", "AZURE_DEVOPS_PROJECT": "Custom"})

        self.assertTrue(config.use_mock_adapters)
        self.assertEqual(config.devops_project, "Custom")
        self.assertEqual(config.github_token, "mock-token")

    def test_repository_mappings(self):
        config = Config(environ=dict(
            PRODUCTION_ENV,
            REPOSITORY_MAPPINGS="user-service=acme/users, billing = acme/billing,broken,bad=nope",
        ))

        self.assertEqual(config.repository_mappings, {
            "user-service": "acme/users",
            "billing": "acme/billing",
        })

    def test_workflow_settings(self):
        settings = Config(environ=PRODUCTION_ENV).workflow_settings()

        self.assertIsInstance(settings, WorkflowSettings)
        self.assertEqual(settings.teams_team_id, "team-1")
        self.assertEqual(settings.teams_channel_id, "channel-1")
        self.assertEqual(settings.devops_project, "Platform")
        self.assertEqual(settings.fix_agent_timeout, 300.0)
        self.assertEqual(settings.max_errors_per_cycle, 10)

    def test_status_has_no_secrets(self):
        config = Config(environ=PRODUCTION_ENV)
        status = str(config.get_status()) + repr(config)

        for secret in ("pat", "ghp_token", "graph-token", "agent-key"):
            self.assertNotIn(f"'{secret}'", status)
        self.assertTrue(config.get_status()["github"]["token_configured"])


class TestInputValidator(unittest.TestCase):
    """Repository name and error id validation."""

    def test_split_full_name(self):
        self.assertEqual(InputValidator.split_full_name("myorg/user-service"), ("myorg", "user-service"))
        self.assertEqual(InputValidator.split_full_name(" myorg/repo.js "), ("myorg", "repo.js"))

    def test_split_full_name_rejects_malformed(self):
        for value in (None, "", "norepo", "/repo", "owner/", "own er/repo", "../repo", "owner/..", 42):
            self.assertIsNone(InputValidator.split_full_name(value), value)

    def test_validate_error_id(self):
        self.assertEqual(InputValidator.validate_error_id("err-001"), "err-001")
        for value in ("", "a/b", "with space", "x" * 101, "a..b"):
            with self.assertRaises(ValueError):
                InputValidator.validate_error_id(value)

    def test_parse_repository_mappings_empty(self):
        self.assertEqual(InputValidator.parse_repository_mappings(None), {})
        self.assertEqual(InputValidator.parse_repository_mappings(""), {})


if __name__ == "__main__":
    unittest.main()
