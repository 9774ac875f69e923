#!/usr/bin/env python3
"""
Conversation Store for the Emoji Gateway
Per-user proposal state, note deduplication and sliding-window rate limiting
on a Valkey/Redis backend.

Keys (prefix bot:emoji:):
- state:<userId>      JSON ConversationState, TTL = state TTL
- processed:<noteId>  dedup marker, SET NX with a short TTL
- ratelimit:<userId>  sorted set of request timestamps (ms)

Every operation touches exactly one key.
"""

import json
import random
import time
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis

from emoji_gateway.config import get_config
from emoji_gateway.config.models import GatewayConfig
from emoji_gateway.common.logging import setup_logging

logger = setup_logging("store")

KEY_PREFIX = "bot:emoji:"
STATUS_CONFIRMING = "confirming"


@dataclass
class ConversationState:
    """A generated emoji awaiting the user's yes/no."""
    file_id: str
    shortcode: str
    reply_to_id: str
    original_text: str
    status: str = STATUS_CONFIRMING

    def to_json(self) -> str:
        return json.dumps({
            "status": self.status,
            "fileId": self.file_id,
            "shortcode": self.shortcode,
            "replyToId": self.reply_to_id,
            "originalText": self.original_text,
        }, ensure_ascii=False)

    @classmethod
    def from_json(cls, data: str) -> "ConversationState":
        """
        Parse a stored record.

        Raises:
            ValueError: If the record is not a valid confirming state.
        """
        obj = json.loads(data)
        if not isinstance(obj, dict):
            raise ValueError("state record is not an object")
        if obj.get("status") != STATUS_CONFIRMING:
            raise ValueError(f"unexpected state status {obj.get('status')!r}")
        fields = {}
        for key in ("fileId", "shortcode", "replyToId", "originalText"):
            value = obj.get(key)
            if not isinstance(value, str):
                raise ValueError(f"state field {key} must be a string, got {type(value).__name__}")
            fields[key] = value

        return cls(
            file_id=fields["fileId"],
            shortcode=fields["shortcode"],
            reply_to_id=fields["replyToId"],
            original_text=fields["originalText"],
        )


class ConversationStore:
    """Redis-backed conversation state, dedup ledger and rate limiter."""

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        """
        Initialize the store.

        Args:
            config: Gateway config; loaded from get_config() if None
            redis_client: Pre-built client (tests); connect() creates one if None
        """
        self.config = config or get_config()
        self.redis_client: Optional[aioredis.Redis] = redis_client

        self.state_ttl = self.config.state.ttl_seconds
        self.dedup_ttl = self.config.state.dedup_ttl_seconds
        self.rate_limit_max = self.config.rate_limit.max_requests
        self.rate_limit_window = self.config.rate_limit.window_seconds

    async def connect(self) -> "ConversationStore":
        """Create the Redis client. The connection itself is established lazily."""
        if self.redis_client is None:
            cfg = self.config.redis
            self.redis_client = aioredis.Redis(
                host=cfg.host,
                port=cfg.port,
                db=cfg.db,
                password=cfg.password or None,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )
            logger.info(f"Valkey client created for {cfg.host}:{cfg.port}")
        return self

    async def close(self):
        """Release the Redis connection pool."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Valkey connection closed")

    async def __aenter__(self) -> "ConversationStore":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @property
    def client(self) -> aioredis.Redis:
        if self.redis_client is None:
            raise RuntimeError("ConversationStore is not connected")
        return self.redis_client

    # --- Keys ---

    @staticmethod
    def state_key(user_id: str) -> str:
        return f"{KEY_PREFIX}state:{user_id}"

    @staticmethod
    def rate_limit_key(user_id: str) -> str:
        return f"{KEY_PREFIX}ratelimit:{user_id}"

    @staticmethod
    def processed_key(note_id: str) -> str:
        return f"{KEY_PREFIX}processed:{note_id}"

    # --- Conversation state ---

    async def get_state(self, user_id: str) -> Optional[ConversationState]:
        """Return the pending proposal for a user, deleting it if corrupt."""
        data = await self.client.get(self.state_key(user_id))
        if not data:
            return None

        try:
            return ConversationState.from_json(data)
        except (ValueError, TypeError) as e:
            logger.warning(f"Failed to parse state for user {user_id}, clearing: {e}",
                           extra={"user_id": user_id})
            await self.delete_state(user_id)
            return None

    async def set_state(self, user_id: str, state: ConversationState) -> None:
        """Store a proposal, replacing any previous one."""
        await self.client.set(self.state_key(user_id), state.to_json(), ex=self.state_ttl)

    async def delete_state(self, user_id: str) -> None:
        await self.client.delete(self.state_key(user_id))

    # --- Rate limiting ---

    async def check_rate_limit(self, user_id: str) -> bool:
        """
        Sliding-window rate limit.

        Returns:
            bool: True if the request is admitted (and recorded), False if limited
        """
        key = self.rate_limit_key(user_id)
        now = int(time.time() * 1000)
        window_ms = self.rate_limit_window * 1000

        # Drop entries that fell out of the window
        await self.client.zremrangebyscore(key, 0, now - window_ms)

        count = await self.client.zcard(key)
        if count >= self.rate_limit_max:
            logger.debug(f"Rate limit hit for {user_id}: {count}/{self.rate_limit_max}",
                         extra={"user_id": user_id})
            return False

        # Random suffix keeps members distinct within the same millisecond
        await self.client.zadd(key, {f"{now}-{random.random()}": now})
        await self.client.expire(key, self.rate_limit_window)
        return True

    # --- Deduplication ---

    async def mark_processed(self, note_id: str) -> bool:
        """
        Record a note id.

        Returns:
            bool: True on first sighting, False if already seen within the TTL
        """
        result = await self.client.set(self.processed_key(note_id), "1", ex=self.dedup_ttl, nx=True)
        return bool(result)

    # --- Health ---

    async def ping(self) -> bool:
        """Liveness check. Never raises."""
        if self.redis_client is None:
            return False
        try:
            return bool(await self.redis_client.ping())
        except Exception as e:
            logger.debug(f"Valkey ping failed: {e}")
            return False
