#!/usr/bin/env python3
"""
Misskey REST client for the Emoji Gateway
Notes, drive uploads and custom emoji registration over the instance API.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from urllib.parse import quote

import aiohttp

from emoji_gateway.config import get_config
from emoji_gateway.config.models import MisskeyConfig
from emoji_gateway.common.logging import setup_logging

logger = setup_logging("misskey")


class MisskeyAPIError(Exception):
    """Raised when the Misskey API returns an error or is unreachable"""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


@dataclass
class UploadResult:
    """A file stored in Misskey Drive."""
    id: str
    url: str


class MisskeyClient:
    """Async client for the Misskey HTTP API"""

    def __init__(self, config: Optional[MisskeyConfig] = None):
        self.config = config or get_config().misskey
        self.host = self.config.host
        self.token = self.config.token
        self.origin = f"https://{self.host}"
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    def streaming_url(self) -> str:
        return f"wss://{self.host}/streaming?i={quote(self.token)}"

    async def _post(self, endpoint: str, **kwargs) -> Any:
        session = await self._get_session()
        url = f"{self.origin}/api/{endpoint}"
        try:
            async with session.post(url, **kwargs) as response:
                if response.status == 204:
                    return None
                if response.status != 200:
                    body = await response.text()
                    logger.error(f"Misskey {endpoint} failed with {response.status}: {body}",
                                 extra={"status": response.status})
                    raise MisskeyAPIError(
                        f"Misskey API {endpoint} error {response.status}",
                        status=response.status,
                        body=body,
                    )
                return await response.json()
        except aiohttp.ClientError as e:
            raise MisskeyAPIError(f"Misskey API {endpoint} request failed: {e}")
        except asyncio.TimeoutError:
            raise MisskeyAPIError(f"Misskey API {endpoint} request timeout")

    async def request(self, endpoint: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Call an API endpoint with a JSON body, authenticated with the token."""
        body = dict(payload or {})
        body["i"] = self.token
        return await self._post(endpoint, json=body)

    async def get_self(self) -> Dict[str, Any]:
        """Fetch the bot's own account (`i` endpoint)."""
        me = await self.request("i")
        if not isinstance(me, dict) or not me.get("username"):
            raise MisskeyAPIError("Misskey API i returned no username")
        return me

    async def create_note(
        self,
        text: str,
        reply_id: Optional[str] = None,
        file_ids: Optional[List[str]] = None,
        visibility: str = "home",
    ) -> Dict[str, Any]:
        """Post a note, usually as a reply to the user's mention."""
        payload: Dict[str, Any] = {"text": text, "visibility": visibility}
        if reply_id:
            payload["replyId"] = reply_id
        if file_ids:
            payload["fileIds"] = file_ids

        response = await self.request("notes/create", payload)
        note_id = (response or {}).get("createdNote", {}).get("id")
        logger.debug(f"Note created: {note_id}", extra={"note_id": note_id})
        return response

    async def upload_file(self, data: bytes, name: str) -> UploadResult:
        """Upload a PNG to Misskey Drive."""
        form = aiohttp.FormData()
        form.add_field("i", self.token)
        form.add_field("file", data, filename=f"{name}.png", content_type="image/png")

        result = await self._post("drive/files/create", data=form)
        if not isinstance(result, dict) or "id" not in result:
            raise MisskeyAPIError("Misskey drive upload returned no file id")

        logger.info(f"File uploaded to Misskey Drive: {result['id']}")
        return UploadResult(id=result["id"], url=result.get("url", ""))

    async def add_emoji(self, name: str, file_id: str, category: Optional[str] = None) -> None:
        """Register a drive file as a custom emoji. Fails if the name is taken."""
        await self.request("admin/emoji/add", {
            "name": name,
            "fileId": file_id,
            "category": category,
            "aliases": [],
            "isSensitive": False,
            "localOnly": False,
        })
        logger.info(f"Emoji registered: {name}", extra={"shortcode": name})
