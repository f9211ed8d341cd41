"""
HTTP client for the automated fix agent service.

A fix is submitted as a run with a natural language prompt; the run is then
polled until it finishes, is cancelled or the caller's timeout elapses.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

import httpx
from loguru import logger

from ..constants import FIX_AGENT
from ..exceptions import FixAgentError
from ..models import FixAgentResult, FixRequest, FixRunState, FixRunStatus
from .base import FixAgent


def build_fix_prompt(request: FixRequest) -> str:
    """Instructions handed to the agent for one fix."""
    primary = request.stack_trace.primary_frame()
    location = []
    if primary:
        file_info = f"File: {primary.file_path}"
        if primary.line_number is not None:
            file_info += f":{primary.line_number}"
        location.append(file_info)
        if primary.function_name:
            location.append(f"Function: {primary.function_name}")

    sections = [
        f"Fix the following bug in the {request.repository} repository on the {request.branch} branch:",
        f"## Error\n{request.error_message}",
        "## Location\n" + ("\n".join(location) or "Unknown"),
        f"## Stack Trace\n```\n{request.stack_trace.raw}\n```",
    ]
    if request.context:
        sections.append(f"## Additional Context\n{request.context}")
    sections.append(
        "## Instructions\n"
        f"1. Check out the {request.branch} branch\n"
        "2. Analyze the error and stack trace\n"
        "3. Implement a fix for the bug\n"
        "4. Make sure the fix does not break existing functionality\n"
        "5. Commit the changes with a descriptive message\n\n"
        "Please fix this bug and provide a summary of your changes."
    )
    return "\n\n".join(sections)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class FixAgentClient(FixAgent):
    """Client for the fix agent REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        environment_id: Optional[str] = None,
        poll_interval: float = FIX_AGENT.POLL_INTERVAL_SECONDS,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.environment_id = environment_id
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, path: str, json: Any = None, run_id: Optional[str] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            raise FixAgentError(
                f"Fix agent API error: {e.response.status_code} {e.response.text[:200]}",
                run_id=run_id,
                cause=e
            )
        except httpx.RequestError as e:
            raise FixAgentError(f"Fix agent connection error: {e}", run_id=run_id, cause=e)

    async def submit_fix(self, request: FixRequest) -> str:
        payload = {
            "prompt": build_fix_prompt(request),
            "config": {
                "name": f"{FIX_AGENT.DEFAULT_RUN_NAME_PREFIX}{request.repository.replace('/', '-')}",
                "environment_id": request.environment_id or self.environment_id,
            },
        }
        data = await self._request("POST", "/runs", json=payload)
        run_id = data.get("run_id") or data.get("id")
        if not run_id:
            raise FixAgentError("Fix agent did not return a run id", repository=request.repository)
        logger.info(f"Fix agent run {run_id} started for {request.repository}")
        return str(run_id)

    async def _fetch_run(self, run_id: str) -> Tuple[FixRunStatus, Dict[str, Any]]:
        """Run status plus the raw payload, which carries the result once finished."""
        data = await self._request("GET", f"/runs/{run_id}", run_id=run_id)
        try:
            state = FixRunState(str(data.get("state", data.get("status", "running"))).lower())
        except ValueError:
            state = FixRunState.RUNNING
        status = FixRunStatus(
            run_id=run_id,
            state=state,
            started_at=_parse_time(data.get("started_at")) or datetime.now(),
            message=data.get("message"),
            completed_at=_parse_time(data.get("completed_at")),
        )
        return status, data

    async def get_run_status(self, run_id: str) -> FixRunStatus:
        status, _ = await self._fetch_run(run_id)
        return status

    async def wait_for_completion(self, run_id: str, timeout: float) -> FixAgentResult:
        started = time.monotonic()

        while time.monotonic() - started < timeout:
            status, data = await self._fetch_run(run_id)
            duration = time.monotonic() - started
            details = data.get("result") or {}

            if status.state == FixRunState.COMPLETED:
                return FixAgentResult(
                    run_id=run_id,
                    success=True,
                    summary=details.get("summary") or status.message or "Fix completed successfully",
                    files_modified=list(details.get("files_modified", [])),
                    commit_sha=details.get("commit_sha"),
                    duration_seconds=duration,
                )
            if status.state == FixRunState.FAILED:
                return FixAgentResult(
                    run_id=run_id,
                    success=False,
                    summary="Fix failed",
                    error=status.message,
                    duration_seconds=duration,
                )
            if status.state == FixRunState.CANCELLED:
                return FixAgentResult(
                    run_id=run_id,
                    success=False,
                    summary="Fix was cancelled",
                    error="Run cancelled",
                    duration_seconds=duration,
                )

            logger.debug(f"Fix run {run_id} still {status.state.value} after {duration:.0f}s")
            await asyncio.sleep(self.poll_interval)

        return FixAgentResult(
            run_id=run_id,
            success=False,
            summary="Fix timed out",
            error=f"Timeout after {timeout:g}s",
            duration_seconds=time.monotonic() - started,
            timed_out=True,
        )

    async def cancel_run(self, run_id: str) -> None:
        await self._request("POST", f"/runs/{run_id}/cancel", run_id=run_id)
        logger.info(f"Cancelled fix run {run_id}")
