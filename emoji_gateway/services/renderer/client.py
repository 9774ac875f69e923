#!/usr/bin/env python3
"""
Renderer client
Font list and emoji rendering on the font/renderer service.
"""

import asyncio
from typing import Optional, Dict, Any, List

import aiohttp

from emoji_gateway.config import get_config
from emoji_gateway.config.models import RendererConfig
from emoji_gateway.common.logging import setup_logging
from emoji_gateway.services.planner.engine import EmojiParams

logger = setup_logging("renderer")


class RendererError(Exception):
    """Raised when the renderer rejects a request or is unreachable"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def build_render_request(params: EmojiParams) -> Dict[str, Any]:
    """Renderer request body; optional settings are sent only when set."""
    style: Dict[str, Any] = {
        "fontId": params.style.fontId,
        "textColor": params.style.textColor,
    }
    if params.style.outlineColor:
        style["outlineColor"] = params.style.outlineColor
    if params.style.outlineWidth:
        style["outlineWidth"] = params.style.outlineWidth
    if params.style.shadow is not None:
        style["shadow"] = params.style.shadow

    body: Dict[str, Any] = {"text": params.text, "style": style}

    if params.layout:
        layout = {}
        if params.layout.mode:
            layout["mode"] = params.layout.mode
        if params.layout.alignment:
            layout["alignment"] = params.layout.alignment
        body["layout"] = layout

    if params.motion_type:
        motion = {"type": params.motion_type}
        if params.motion.intensity:
            motion["intensity"] = params.motion.intensity
        body["motion"] = motion

    return body


class RendererClient:
    """Async client for the renderer HTTP API"""

    def __init__(self, config: Optional[RendererConfig] = None):
        self.config = config or get_config().renderer
        self.base_url = self.config.base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self._font_cache: Optional[List[str]] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_font_list(self) -> List[str]:
        """Font IDs accepted by the renderer. Cached for the process lifetime."""
        if self._font_cache:
            return self._font_cache

        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/fonts") as response:
                if response.status != 200:
                    raise RendererError(f"Failed to fetch font list: {response.status}", status=response.status)
                data = await response.json()
        except aiohttp.ClientError as e:
            raise RendererError(f"Font list request failed: {e}")
        except asyncio.TimeoutError:
            raise RendererError("Font list request timeout")

        self._font_cache = [font["id"] for font in data]
        logger.info(f"Fetched font list from renderer ({len(self._font_cache)} fonts)")
        return self._font_cache

    def clear_font_cache(self):
        self._font_cache = None

    async def render(self, params: EmojiParams) -> bytes:
        """Render an emoji and return the image bytes."""
        session = await self._get_session()
        try:
            async with session.post(f"{self.base_url}/generate", json=build_render_request(params)) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error(f"Render failed with {response.status}: {error_text}",
                                 extra={"status": response.status})
                    raise RendererError(f"Failed to render emoji: {response.status}", status=response.status)
                return await response.read()
        except aiohttp.ClientError as e:
            raise RendererError(f"Render request failed: {e}")
        except asyncio.TimeoutError:
            raise RendererError("Render request timeout")
