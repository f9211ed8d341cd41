"""Microsoft Teams channel notifications via Microsoft Graph."""

from typing import Optional

import httpx
from loguru import logger

from ..exceptions import NotificationError
from .base import ChatNotifier

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class TeamsNotifier(ChatNotifier):
    """Posts channel messages through the Graph API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = GRAPH_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def send_channel_message(
        self,
        team_id: str,
        channel_id: str,
        message: str,
        format: str = "markdown",
        importance: str = "normal"
    ) -> None:
        # Graph renders html; markdown is sent as-is inside an html body
        payload = {
            "body": {
                "contentType": "text" if format == "text" else "html",
                "content": message,
            },
            "importance": importance,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/teams/{team_id}/channels/{channel_id}/messages",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                response.raise_for_status()
            logger.debug(f"Sent {importance} message to channel {channel_id}")
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Teams API error: {e.response.status_code} {e.response.text[:200]}",
                channel_id=channel_id,
                cause=e
            )
        except httpx.RequestError as e:
            raise NotificationError(f"Teams connection error: {e}", channel_id=channel_id, cause=e)
