"""
Stream Chat server-side client.

Thin async wrapper over the Stream Chat REST API used to mirror community
channels and their members. Only the handful of calls the channel sync engine
needs are implemented:
- user upsert
- channel get-or-create
- add / remove members
- system / user messages

Documentation: https://getstream.io/chat/docs/rest/
"""
import logging
from typing import Any, Dict, Optional

import httpx
from jose import jwt

from circle_access.core.config import settings

log = logging.getLogger(__name__)

CHANNEL_TYPE = "messaging"


class StreamChatError(Exception):
    """Raised when the chat service rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def generate_stream_channel_id(creator_id: str, channel_id: str) -> str:
    # Stream caps channel ids at 64 chars; this stays well under.
    short_creator_id = creator_id.replace("-", "")[:12]
    short_channel_id = channel_id.replace("-", "")[:12]
    return f"ch_{short_creator_id}_{short_channel_id}"


class StreamChatService:
    """
    Service for the Stream Chat REST API.
    Server calls are authenticated with a server-side JWT signed by the API secret.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STREAM_API_KEY
        self.api_secret = api_secret if api_secret is not None else settings.STREAM_API_SECRET
        self.base_url = (base_url or settings.STREAM_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.STREAM_TIMEOUT_SECONDS

    def _server_token(self) -> str:
        if not self.api_key or not self.api_secret:
            raise StreamChatError("STREAM_API_KEY / STREAM_API_SECRET are not configured")
        return jwt.encode({"server": True}, self.api_secret, algorithm="HS256")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": self._server_token(),
            "stream-auth-type": "jwt",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def create_user_token(self, user_id: str) -> str:
        """Client-side auth token for a user."""
        if not self.api_secret:
            raise StreamChatError("STREAM_API_SECRET is not configured")
        return jwt.encode({"user_id": user_id}, self.api_secret, algorithm="HS256")

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._get_headers()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    f"{self.base_url}{path}",
                    params={"api_key": self.api_key},
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                log.error(f"Stream API error on {path}: {e.response.status_code} - {e.response.text}")
                raise StreamChatError(
                    f"Stream API returned {e.response.status_code}",
                    status_code=e.response.status_code,
                    body=e.response.text,
                ) from e
            except httpx.HTTPError as e:
                log.error(f"Stream API request failed on {path}: {e}")
                raise StreamChatError(f"Stream API request failed: {e}") from e

    async def upsert_user(self, user_id: str, name: str | None, image: Optional[str] = None) -> None:
        user: Dict[str, Any] = {"id": user_id, "name": name or user_id}
        if image:
            user["image"] = image
        await self._post("/users", {"users": {user_id: user}})

    async def get_or_create_channel(
        self,
        channel_id: str,
        data: Dict[str, Any],
        members: list[str] | None = None,
        channel_type: str = CHANNEL_TYPE,
    ) -> Dict[str, Any]:
        """
        Query-with-data creates the channel when missing and returns the
        existing one otherwise, so repeated calls converge on one channel.
        """
        channel_data = dict(data)
        if members:
            channel_data["members"] = list(members)
        return await self._post(
            f"/channels/{channel_type}/{channel_id}/query",
            {"data": channel_data, "state": False, "watch": False, "presence": False},
        )

    async def add_members(
        self,
        channel_id: str,
        user_ids: list[str],
        channel_type: str = CHANNEL_TYPE,
    ) -> None:
        if not user_ids:
            return
        await self._post(f"/channels/{channel_type}/{channel_id}", {"add_members": list(user_ids)})

    async def remove_members(
        self,
        channel_id: str,
        user_ids: list[str],
        channel_type: str = CHANNEL_TYPE,
    ) -> None:
        if not user_ids:
            return
        await self._post(f"/channels/{channel_type}/{channel_id}", {"remove_members": list(user_ids)})

    async def send_message(
        self,
        channel_id: str,
        text: str,
        user_id: str,
        message_type: str | None = None,
        custom: Dict[str, Any] | None = None,
        channel_type: str = CHANNEL_TYPE,
    ) -> Dict[str, Any]:
        message: Dict[str, Any] = {"text": text, "user_id": user_id}
        if message_type:
            message["type"] = message_type
        if custom:
            message.update(custom)
        return await self._post(f"/channels/{channel_type}/{channel_id}/message", {"message": message})


stream_client = StreamChatService()
