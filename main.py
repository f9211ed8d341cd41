#!/usr/bin/env python3
"""
Error Monitor - Main Entry Point

Watches the audit log for application errors and, for each one, opens a bug
work item, runs the fix agent on a new branch, raises a draft pull request and
notifies the team channel.

Usage:
    python main.py [--env-file .env] [--mode once|continuous|serve] [--mock]

Environment Variables (required unless USE_MOCK_ADAPTERS=true):
    AWS_REGION, DYNAMODB_TABLE_NAME - Audit log table
    AZURE_DEVOPS_ORG, AZURE_DEVOPS_PROJECT, AZURE_DEVOPS_PAT - Work items
    GITHUB_TOKEN - GitHub personal access token
    TEAMS_ACCESS_TOKEN, TEAMS_TEAM_ID, TEAMS_CHANNEL_ID - Notifications
    FIX_AGENT_API_KEY, FIX_AGENT_BASE_URL - Fix agent service

Optional Environment Variables:
    GITHUB_ORG - Organization that repository searches are scoped to
    FIX_AGENT_ENVIRONMENT_ID - Fix agent environment
    FIX_AGENT_TIMEOUT - Seconds to wait for a fix run (default: 300)
    POLL_INTERVAL - Seconds between cycles in continuous mode (default: 60)
    MAX_ERRORS_PER_CYCLE - Errors processed per cycle (default: 10)
    REPOSITORY_MAPPINGS - source=owner/repo,... table
    LOG_LEVEL - Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import argparse
import asyncio
import sys
from typing import Optional
from pathlib import Path
from loguru import logger

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from error_monitor import ErrorMonitorServer, __version__


def setup_logging(log_level: str = "INFO") -> None:
    """Setup Loguru-based logging."""
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True,
    )
    logger.info(f"Log level set to {log_level.upper()}")


def effective_log_level(cli_level: Optional[str], configured_level: Optional[str]) -> str:
    """--log-level wins over LOG_LEVEL; INFO when neither is set."""
    return (cli_level or configured_level or "INFO").upper()


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Error Monitor - automated bug fixing from audit log errors",
        epilog="""
Examples:
    python main.py --mock --mode once       # One cycle against in-memory adapters
    python main.py --mode continuous        # Poll the audit log
    python main.py --mode serve             # Expose MCP tools over stdio
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument(
        "--env-file",
        type=str,
        help="Path to environment file (default: .env in current directory)"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL from the environment, else INFO)"
    )

    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use in-memory adapters instead of the real services"
    )

    parser.add_argument(
        "--mode",
        type=str,
        default="once",
        choices=["once", "continuous", "serve"],
        help="Process one batch, poll continuously, or run the MCP server (default: once)"
    )

    parser.add_argument(
        "--transport",
        type=str,
        default="stdio",
        choices=["stdio", "sse"],
        help="MCP transport protocol for --mode serve (default: stdio)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Error Monitor {__version__}"
    )

    return parser.parse_args()


def main() -> None:
    """Main entry point for the Error Monitor."""
    args = parse_arguments()
    setup_logging(effective_log_level(args.log_level, None))

    logger.info(f"🚀 Starting Error Monitor v{__version__} ({args.mode} mode)")
    server = ErrorMonitorServer(env_file=args.env_file, use_mock=True if args.mock else None)
    if args.log_level is None:
        setup_logging(effective_log_level(args.log_level, server.config.log_level))

    try:
        if args.mode == "serve":
            server.run(transport=args.transport)
        elif args.mode == "continuous":
            asyncio.run(server.run_continuous())
        else:
            results = asyncio.run(server.run_once())
            failed = [result for result in results if not result.success]
            logger.info(f"Done: {len(results) - len(failed)} fixed, {len(failed)} failed")

    except KeyboardInterrupt:
        server.stop()
        logger.info("🛑 Shutdown requested by user")

    except Exception as e:
        logger.error(f"❌ Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
