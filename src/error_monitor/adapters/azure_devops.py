"""Azure DevOps work item integration over the REST API."""

from typing import Any, Dict, List, Optional

import httpx
from loguru import logger

from ..exceptions import WorkItemError
from ..models import BugWorkItem, CreateBugInput
from .base import IssueTracker

API_VERSION = "7.0"
COMMENTS_API_VERSION = "7.0-preview.3"

# BugWorkItem attribute -> work item field reference name
FIELD_NAMES = {
    "title": "System.Title",
    "description": "System.Description",
    "repro_steps": "Microsoft.VSTS.TCM.ReproSteps",
    "system_info": "Microsoft.VSTS.TCM.SystemInfo",
    "priority": "Microsoft.VSTS.Common.Priority",
    "severity": "Microsoft.VSTS.Common.Severity",
    "tags": "System.Tags",
    "assigned_to": "System.AssignedTo",
    "area_path": "System.AreaPath",
    "iteration_path": "System.IterationPath",
    "state": "System.State",
}


def _patch_value(key: str, value: Any) -> Any:
    if key == "tags" and isinstance(value, (list, tuple)):
        return "; ".join(value)
    return value


class AzureDevOpsIssueTracker(IssueTracker):
    """Issue tracker backed by Azure DevOps Boards."""

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.organization = organization
        self.project = project
        self.base_url = f"https://dev.azure.com/{organization}/{project}/_apis"
        self._auth = httpx.BasicAuth("", pat)
        self.timeout = timeout
        self.transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        work_item_id: Optional[int] = None,
        json: Any = None,
        api_version: str = API_VERSION,
        content_type: str = "application/json-patch+json",
        allow_not_found: bool = False
    ) -> Optional[Dict[str, Any]]:
        try:
            async with httpx.AsyncClient(auth=self._auth, timeout=self.timeout, transport=self.transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params={"api-version": api_version},
                    json=json,
                    headers={"Content-Type": content_type},
                )
                if allow_not_found and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            raise WorkItemError(
                f"Azure DevOps {operation} failed: {e.response.status_code} {e.response.text[:200]}",
                work_item_id=work_item_id,
                operation=operation,
                status_code=e.response.status_code,
                cause=e
            )
        except httpx.RequestError as e:
            raise WorkItemError(
                f"Azure DevOps connection error during {operation}: {e}",
                work_item_id=work_item_id,
                operation=operation,
                cause=e
            )

    @staticmethod
    def _to_work_item(data: Dict[str, Any], related_error_id: str = "") -> BugWorkItem:
        fields = data.get("fields", {})
        tags = [tag.strip() for tag in (fields.get("System.Tags") or "").split(";") if tag.strip()]
        assigned_to = fields.get("System.AssignedTo")
        if isinstance(assigned_to, dict):
            assigned_to = assigned_to.get("uniqueName") or assigned_to.get("displayName")
        return BugWorkItem(
            id=int(data["id"]),
            title=fields.get("System.Title", ""),
            description=fields.get("System.Description", ""),
            related_error_id=related_error_id,
            repro_steps=fields.get("Microsoft.VSTS.TCM.ReproSteps"),
            system_info=fields.get("Microsoft.VSTS.TCM.SystemInfo"),
            priority=int(fields.get("Microsoft.VSTS.Common.Priority", 2)),
            severity=fields.get("Microsoft.VSTS.Common.Severity", "2 - High"),
            tags=tags,
            assigned_to=assigned_to,
            area_path=fields.get("System.AreaPath"),
            iteration_path=fields.get("System.IterationPath"),
            state=fields.get("System.State", "New"),
        )

    async def create_bug(self, bug: CreateBugInput) -> BugWorkItem:
        operations: List[Dict[str, Any]] = []
        for key, reference in FIELD_NAMES.items():
            value = getattr(bug, key, None)
            if value in (None, "", []):
                continue
            operations.append({"op": "add", "path": f"/fields/{reference}", "value": _patch_value(key, value)})

        data = await self._request("POST", "/wit/workitems/$Bug", "create_bug", json=operations)
        work_item = self._to_work_item(data, related_error_id=bug.related_error_id)
        logger.info(f"Created Azure DevOps bug #{work_item.id}: {bug.title}")
        return work_item

    async def update_bug(self, work_item_id: int, updates: Dict[str, Any]) -> BugWorkItem:
        operations = [
            {"op": "add", "path": f"/fields/{FIELD_NAMES[key]}", "value": _patch_value(key, value)}
            for key, value in updates.items()
            if key in FIELD_NAMES
        ]
        data = await self._request(
            "PATCH", f"/wit/workitems/{work_item_id}", "update_bug",
            work_item_id=work_item_id, json=operations
        )
        return self._to_work_item(data)

    async def add_comment(self, work_item_id: int, comment: str) -> None:
        await self._request(
            "POST", f"/wit/workitems/{work_item_id}/comments", "add_comment",
            work_item_id=work_item_id,
            json={"text": comment},
            api_version=COMMENTS_API_VERSION,
            content_type="application/json",
        )

    async def link_pull_request(self, work_item_id: int, pr_url: str) -> None:
        operations = [{
            "op": "add",
            "path": "/relations/-",
            "value": {
                "rel": "Hyperlink",
                "url": pr_url,
                "attributes": {"comment": "Pull Request"},
            },
        }]
        await self._request(
            "PATCH", f"/wit/workitems/{work_item_id}", "link_pull_request",
            work_item_id=work_item_id, json=operations
        )
        logger.debug(f"Linked {pr_url} to work item #{work_item_id}")

    async def get_work_item(self, work_item_id: int) -> Optional[BugWorkItem]:
        data = await self._request(
            "GET", f"/wit/workitems/{work_item_id}", "get_work_item",
            work_item_id=work_item_id,
            content_type="application/json",
            allow_not_found=True,
        )
        return self._to_work_item(data) if data else None

    async def close_work_item(self, work_item_id: int, reason: str) -> None:
        operations = [
            {"op": "add", "path": "/fields/System.State", "value": "Closed"},
            {"op": "add", "path": "/fields/Microsoft.VSTS.Common.ResolvedReason", "value": reason},
        ]
        await self._request(
            "PATCH", f"/wit/workitems/{work_item_id}", "close_work_item",
            work_item_id=work_item_id, json=operations
        )
