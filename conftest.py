"""Shared pytest fixtures for the Emoji Gateway."""

import logging
from typing import Dict, Optional, Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from emoji_gateway.config.models import GatewayConfig
from emoji_gateway.common.metrics import GatewayMetrics
from emoji_gateway.services.store.engine import ConversationStore

# Suppress logging during tests
logging.disable(logging.CRITICAL)


class Clock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for the redis.asyncio commands ConversationStore uses."""

    def __init__(self, clock: Clock):
        self.clock = clock
        self.strings: Dict[str, str] = {}
        self.zsets: Dict[str, Dict[str, float]] = {}
        self.expires: Dict[str, float] = {}
        self.fail_ping = False

    def _expire_keys(self):
        now = self.clock.time()
        for key, deadline in list(self.expires.items()):
            if deadline <= now:
                self.strings.pop(key, None)
                self.zsets.pop(key, None)
                del self.expires[key]

    async def get(self, key: str) -> Optional[str]:
        self._expire_keys()
        return self.strings.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None, nx: bool = False):
        self._expire_keys()
        if nx and key in self.strings:
            return None
        self.strings[key] = value
        if ex is not None:
            self.expires[key] = self.clock.time() + ex
        else:
            self.expires.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.strings.pop(key, None) is not None or self.zsets.pop(key, None) is not None:
                removed += 1
            self.expires.pop(key, None)
        return removed

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        self._expire_keys()
        members = self.zsets.get(key, {})
        doomed = [m for m, score in members.items() if min_score <= score <= max_score]
        for member in doomed:
            del members[member]
        return len(doomed)

    async def zcard(self, key: str) -> int:
        self._expire_keys()
        return len(self.zsets.get(key, {}))

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        self._expire_keys()
        members = self.zsets.setdefault(key, {})
        added = sum(1 for m in mapping if m not in members)
        members.update(mapping)
        return added

    async def expire(self, key: str, seconds: int) -> bool:
        if key not in self.strings and key not in self.zsets:
            return False
        self.expires[key] = self.clock.time() + seconds
        return True

    async def ping(self) -> bool:
        if self.fail_ping:
            raise ConnectionError("Connection refused")
        return True

    async def aclose(self):
        pass


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def gateway_config():
    cfg = GatewayConfig()
    cfg.misskey.host = "misskey.example.com"
    cfg.misskey.token = "test-token"
    cfg.renderer.base_url = "http://renderer.local"
    cfg.openai.api_key = "sk-test"
    cfg.rate_limit.max_requests = 3
    cfg.rate_limit.window_seconds = 60
    cfg.state.ttl_seconds = 600
    return cfg


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def store(gateway_config, fake_redis, clock):
    """ConversationStore on FakeRedis, with the store's clock pinned to `clock`."""
    with patch("emoji_gateway.services.store.engine.time") as mock_time:
        mock_time.time.side_effect = clock.time
        yield ConversationStore(gateway_config, redis_client=fake_redis)


@pytest.fixture
def metrics():
    return GatewayMetrics()


@pytest.fixture
def mock_misskey():
    from emoji_gateway.services.misskey.client import UploadResult

    misskey = MagicMock()
    misskey.create_note = AsyncMock(return_value={"createdNote": {"id": "reply1"}})
    misskey.upload_file = AsyncMock(return_value=UploadResult(id="file123", url="https://files/file123.png"))
    misskey.add_emoji = AsyncMock(return_value=None)
    return misskey


@pytest.fixture
def emoji_params():
    from emoji_gateway.services.planner.engine import EmojiParams

    return EmojiParams.model_validate({
        "text": "嬉しい",
        "layout": {"mode": "square", "alignment": "center"},
        "style": {
            "fontId": "rounded-mplus",
            "textColor": "#FF8800",
            "outlineColor": "#FFFFFF",
            "outlineWidth": 4,
            "shadow": None,
        },
        "motion": {"type": "bounce", "intensity": "medium"},
        "shortcode": "happy_emoji",
    })


@pytest.fixture
def mock_renderer():
    renderer = MagicMock()
    renderer.fetch_font_list = AsyncMock(return_value=["rounded-mplus", "noto-sans-jp"])
    renderer.render = AsyncMock(return_value=b"\x89PNG fake image")
    return renderer


@pytest.fixture
def mock_planner(emoji_params):
    from emoji_gateway.services.planner.engine import PlanResult, explain

    planner = MagicMock()
    planner.plan = AsyncMock(return_value=PlanResult(params=emoji_params, explanation=explain(emoji_params)))
    return planner


@pytest.fixture
def orchestrator(store, mock_renderer, mock_planner, mock_misskey, metrics):
    from emoji_gateway.services.dialogue.orchestrator import DialogueOrchestrator

    return DialogueOrchestrator(
        store=store,
        renderer=mock_renderer,
        planner=mock_planner,
        misskey=mock_misskey,
        metrics=metrics,
    )


def make_note(
    text: Optional[str] = "@emojibot make a happy emoji",
    note_id: str = "note1",
    user_id: str = "user1",
    host: Optional[str] = None,
    is_bot: bool = False,
) -> Dict[str, Any]:
    """Misskey note payload as delivered on the mention event."""
    return {
        "id": note_id,
        "userId": user_id,
        "text": text,
        "user": {"id": user_id, "username": "alice", "host": host, "isBot": is_bot},
    }


@pytest.fixture
def note_factory():
    return make_note
