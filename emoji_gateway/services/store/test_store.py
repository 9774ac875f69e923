#!/usr/bin/env python3
"""
Conversation Store Tests
State lifecycle, self-healing, rate limiting and deduplication on FakeRedis.
"""

import json
from unittest.mock import AsyncMock

import pytest

from emoji_gateway.services.store.engine import ConversationStore, ConversationState


def make_state(shortcode: str = "happy_emoji") -> ConversationState:
    return ConversationState(
        file_id="file123",
        shortcode=shortcode,
        reply_to_id="note1",
        original_text="make a happy emoji",
    )


class TestConversationState:

    def test_serialized_with_camel_case_keys(self):
        data = json.loads(make_state().to_json())
        assert data == {
            "status": "confirming",
            "fileId": "file123",
            "shortcode": "happy_emoji",
            "replyToId": "note1",
            "originalText": "make a happy emoji",
        }

    def test_round_trip(self):
        assert ConversationState.from_json(make_state().to_json()) == make_state()

    @pytest.mark.parametrize("raw", [
        "not json",
        "[]",
        '{"status": "confirming"}',
        '{"status": "done", "fileId": "f", "shortcode": "s", "replyToId": "r", "originalText": "t"}',
        '{"status": "confirming", "fileId": null, "shortcode": "s", "replyToId": "r", "originalText": "t"}',
        '{"status": "confirming", "fileId": "f", "shortcode": 42, "replyToId": "r", "originalText": "t"}',
    ])
    def test_invalid_records_rejected(self, raw):
        with pytest.raises(ValueError):
            ConversationState.from_json(raw)


class TestStateOperations:

    @pytest.mark.asyncio
    async def test_get_absent_returns_none(self, store):
        assert await store.get_state("user1") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, store, fake_redis):
        await store.set_state("user1", make_state())

        assert await store.get_state("user1") == make_state()
        assert "bot:emoji:state:user1" in fake_redis.strings

    @pytest.mark.asyncio
    async def test_set_overwrites_single_record(self, store, fake_redis):
        await store.set_state("user1", make_state("first"))
        await store.set_state("user1", make_state("second"))

        state_keys = [k for k in fake_redis.strings if k.startswith("bot:emoji:state:")]
        assert state_keys == ["bot:emoji:state:user1"]
        assert (await store.get_state("user1")).shortcode == "second"

    @pytest.mark.asyncio
    async def test_state_expires_after_ttl(self, store, clock):
        await store.set_state("user1", make_state())

        clock.advance(599)
        assert await store.get_state("user1") is not None
        clock.advance(2)
        assert await store.get_state("user1") is None

    @pytest.mark.asyncio
    async def test_users_are_independent(self, store):
        await store.set_state("user1", make_state("one"))
        await store.set_state("user2", make_state("two"))
        await store.delete_state("user1")

        assert await store.get_state("user1") is None
        assert (await store.get_state("user2")).shortcode == "two"

    @pytest.mark.asyncio
    async def test_delete_absent_is_noop(self, store):
        await store.delete_state("nobody")

    @pytest.mark.asyncio
    async def test_corrupt_state_is_deleted(self, store, fake_redis):
        fake_redis.strings["bot:emoji:state:user1"] = "{broken"

        assert await store.get_state("user1") is None
        assert "bot:emoji:state:user1" not in fake_redis.strings

    @pytest.mark.asyncio
    async def test_null_field_state_is_deleted(self, store, fake_redis):
        fake_redis.strings["bot:emoji:state:user1"] = json.dumps({
            "status": "confirming",
            "fileId": None,
            "shortcode": "happy_emoji",
            "replyToId": "note1",
            "originalText": "make a happy emoji",
        })

        assert await store.get_state("user1") is None
        assert "bot:emoji:state:user1" not in fake_redis.strings


class TestRateLimit:
    """max_requests=3 per 60 s in the test config."""

    @pytest.mark.asyncio
    async def test_admits_up_to_max_then_denies(self, store):
        results = [await store.check_rate_limit("user1") for _ in range(4)]
        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_denied_request_is_not_recorded(self, store, fake_redis):
        for _ in range(5):
            await store.check_rate_limit("user1")
        assert len(fake_redis.zsets["bot:emoji:ratelimit:user1"]) == 3

    @pytest.mark.asyncio
    async def test_same_millisecond_entries_are_distinct(self, store, fake_redis):
        await store.check_rate_limit("user1")
        await store.check_rate_limit("user1")
        assert len(fake_redis.zsets["bot:emoji:ratelimit:user1"]) == 2

    @pytest.mark.asyncio
    async def test_window_slides(self, store, clock):
        for _ in range(3):
            assert await store.check_rate_limit("user1")
            clock.advance(10)
        assert not await store.check_rate_limit("user1")

        # First entry (t=0) leaves the window at t=60
        clock.advance(31)
        assert await store.check_rate_limit("user1")
        assert not await store.check_rate_limit("user1")

    @pytest.mark.asyncio
    async def test_resets_after_window(self, store, clock):
        for _ in range(3):
            await store.check_rate_limit("user1")
        assert not await store.check_rate_limit("user1")

        clock.advance(61)
        assert await store.check_rate_limit("user1")

    @pytest.mark.asyncio
    async def test_limit_is_per_user(self, store):
        for _ in range(3):
            await store.check_rate_limit("user1")
        assert not await store.check_rate_limit("user1")
        assert await store.check_rate_limit("user2")

    @pytest.mark.asyncio
    async def test_window_key_gets_expiry(self, store, fake_redis, clock):
        await store.check_rate_limit("user1")
        assert fake_redis.expires["bot:emoji:ratelimit:user1"] == clock.now + 60


class TestDeduplication:

    @pytest.mark.asyncio
    async def test_first_sighting_only(self, store):
        assert await store.mark_processed("note1") is True
        assert await store.mark_processed("note1") is False
        assert await store.mark_processed("note2") is True

    @pytest.mark.asyncio
    async def test_marker_expires(self, store, clock):
        assert await store.mark_processed("note1")
        clock.advance(301)
        assert await store.mark_processed("note1")


class TestPing:

    @pytest.mark.asyncio
    async def test_ping_ok(self, store):
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_ping_failure_returns_false(self, store, fake_redis):
        fake_redis.fail_ping = True
        assert await store.ping() is False

    @pytest.mark.asyncio
    async def test_ping_without_client(self, gateway_config):
        assert await ConversationStore(gateway_config).ping() is False

    @pytest.mark.asyncio
    async def test_close_releases_client(self, gateway_config):
        client = AsyncMock()
        store = ConversationStore(gateway_config, redis_client=client)
        await store.close()
        client.aclose.assert_awaited_once()
        assert store.redis_client is None
