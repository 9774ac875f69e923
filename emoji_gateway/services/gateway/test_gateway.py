#!/usr/bin/env python3
"""
Gateway Service Tests
HTTP endpoints and startup wiring with every external client patched out.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from emoji_gateway.config import ConfigError
from emoji_gateway.services.gateway.api import GatewayService
from emoji_gateway.services.misskey.client import MisskeyAPIError
from emoji_gateway.services.renderer.client import RendererError
from emoji_gateway.services.store.engine import ConversationStore

API = "emoji_gateway.services.gateway.api"


@pytest.fixture
def service(gateway_config):
    return GatewayService(gateway_config)


@pytest.fixture
def patched_clients():
    with patch(f"{API}.MisskeyClient") as misskey_cls, \
            patch(f"{API}.RendererClient") as renderer_cls, \
            patch(f"{API}.EmojiPlanner") as planner_cls, \
            patch(f"{API}.StreamSupervisor") as supervisor_cls:
        misskey = misskey_cls.return_value
        misskey.get_self = AsyncMock(return_value={"id": "bot1", "username": "emojibot"})
        misskey.streaming_url.return_value = "wss://misskey.example.com/streaming?i=test-token"
        misskey.close = AsyncMock()

        renderer = renderer_cls.return_value
        renderer.fetch_font_list = AsyncMock(return_value=["rounded-mplus"])
        renderer.close = AsyncMock()

        planner_cls.return_value.close = AsyncMock()

        supervisor = supervisor_cls.return_value
        supervisor.run = AsyncMock()
        supervisor.stop = AsyncMock()
        supervisor.on = MagicMock(return_value=lambda handler: handler)

        yield MagicMock(misskey=misskey, renderer=renderer, supervisor=supervisor,
                        supervisor_cls=supervisor_cls)


class TestHttpEndpoints:

    def test_health_ok(self, service, gateway_config, fake_redis):
        service.store = ConversationStore(gateway_config, redis_client=fake_redis)

        response = TestClient(service.get_app()).get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"valkey": "ok"}
        assert "timestamp" in body

    def test_health_degraded_when_valkey_down(self, service, gateway_config, fake_redis):
        fake_redis.fail_ping = True
        service.store = ConversationStore(gateway_config, redis_client=fake_redis)

        response = TestClient(service.get_app()).get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["checks"] == {"valkey": "error"}

    def test_health_degraded_before_setup(self, service):
        response = TestClient(service.get_app()).get("/health")
        assert response.status_code == 503

    def test_metrics(self, service):
        service.metrics.inc("emoji_bot_mentions_received_total", 4)

        response = TestClient(service.get_app()).get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "emoji_bot_up 1\n" in response.text
        assert "emoji_bot_mentions_received_total 4\n" in response.text


class TestSetup:

    @pytest.mark.asyncio
    async def test_wires_pipeline(self, service, patched_clients):
        await service.setup()
        try:
            assert service.bot_username == "emojibot"
            assert service.dispatcher.bot_username == "emojibot"
            patched_clients.supervisor_cls.assert_called_once_with(
                "wss://misskey.example.com/streaming?i=test-token", metrics=service.metrics)
            patched_clients.supervisor.on.assert_called_once_with("mention")
            patched_clients.renderer.fetch_font_list.assert_awaited_once()
        finally:
            await service.teardown()

        patched_clients.supervisor.stop.assert_awaited_once()
        patched_clients.misskey.close.assert_awaited_once()
        assert service.store.redis_client is None

    @pytest.mark.asyncio
    async def test_font_prefetch_failure_is_not_fatal(self, service, patched_clients):
        patched_clients.renderer.fetch_font_list.side_effect = RendererError("down", status=503)

        await service.setup()
        await service.teardown()

        assert service.dispatcher is not None

    @pytest.mark.asyncio
    async def test_unknown_bot_account_is_fatal(self, service, patched_clients):
        patched_clients.misskey.get_self.side_effect = MisskeyAPIError("unauthorized", status=401)

        with pytest.raises(MisskeyAPIError):
            await service.setup()
        await service.teardown()

        patched_clients.supervisor_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_config_is_fatal(self, gateway_config, patched_clients):
        gateway_config.openai.api_key = ""
        service = GatewayService(gateway_config)

        with pytest.raises(ConfigError):
            await service.setup()
