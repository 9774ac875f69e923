#!/usr/bin/env python3
"""
Emoji Gateway Service
Wires the store, collaborator clients, dialogue and stream supervisor into
one process and serves the health/metrics HTTP endpoints.

Endpoints:
- GET /health: Valkey connectivity (200 healthy / 503 degraded)
- GET /metrics: Prometheus text exposition
"""

import asyncio
import sys
from typing import Optional, Dict, Any, Tuple

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from emoji_gateway.config import get_config, validate_config, GatewayConfig, ConfigError
from emoji_gateway.common.service_base import GatewayServiceBase
from emoji_gateway.common.logging import configure_defaults
from emoji_gateway.common.metrics import GatewayMetrics
from emoji_gateway.common import stream_events
from emoji_gateway.services.dialogue.orchestrator import DialogueOrchestrator
from emoji_gateway.services.misskey.client import MisskeyClient
from emoji_gateway.services.planner.engine import EmojiPlanner
from emoji_gateway.services.renderer.client import RendererClient, RendererError
from emoji_gateway.services.store.engine import ConversationStore
from emoji_gateway.services.stream.dispatcher import MentionDispatcher
from emoji_gateway.services.stream.supervisor import StreamSupervisor


class GatewayService(GatewayServiceBase):
    """Emoji gateway process."""

    def __init__(self, config: Optional[GatewayConfig] = None):
        cfg = config or get_config()
        super().__init__(name="gateway", http_port=cfg.server.port, config=cfg)

        self.metrics = GatewayMetrics()
        self.store: Optional[ConversationStore] = None
        self.misskey: Optional[MisskeyClient] = None
        self.renderer: Optional[RendererClient] = None
        self.planner: Optional[EmojiPlanner] = None
        self.orchestrator: Optional[DialogueOrchestrator] = None
        self.dispatcher: Optional[MentionDispatcher] = None
        self.supervisor: Optional[StreamSupervisor] = None
        self.bot_username: Optional[str] = None

        self._register_routes(self.get_app())

    def _register_routes(self, app: FastAPI):
        @app.get("/metrics", response_class=PlainTextResponse)
        async def metrics():
            return PlainTextResponse(self.metrics.render(), media_type="text/plain; version=0.0.4")

    async def health(self) -> Tuple[bool, Dict[str, Any]]:
        valkey_ok = self.store is not None and await self.store.ping()
        return valkey_ok, {"valkey": "ok" if valkey_ok else "error"}

    async def setup(self):
        """Connect dependencies, identify the bot account and start streaming."""
        validate_config(self.config)

        self.store = await ConversationStore(self.config).connect()
        self.misskey = MisskeyClient(self.config.misskey)
        self.renderer = RendererClient(self.config.renderer)
        self.planner = EmojiPlanner(self.config.openai)

        # Without our own username mentions cannot be parsed; fatal
        try:
            me = await self.misskey.get_self()
        except Exception as e:
            self.logger.error(f"Failed to fetch bot account info: {e}")
            raise
        self.bot_username = me["username"]
        self.logger.info(f"Bot account identified: @{self.bot_username}")

        try:
            await self.renderer.fetch_font_list()
            self.logger.info("Font list cached")
        except RendererError as e:
            self.logger.warning(f"Failed to fetch font list, will retry on first request: {e}")

        self.orchestrator = DialogueOrchestrator(
            store=self.store,
            renderer=self.renderer,
            planner=self.planner,
            misskey=self.misskey,
            metrics=self.metrics,
        )
        self.dispatcher = MentionDispatcher(
            store=self.store,
            orchestrator=self.orchestrator,
            bot_username=self.bot_username,
            metrics=self.metrics,
        )
        self.supervisor = StreamSupervisor(self.misskey.streaming_url(), metrics=self.metrics)
        self.supervisor.on(stream_events.MENTION)(self.dispatcher.handle_mention)

        self.start_task(self.supervisor.run())
        self.logger.info("Emoji Gateway is running")

    async def teardown(self):
        if self.supervisor:
            await self.supervisor.stop()
        for client in (self.misskey, self.renderer, self.planner):
            if client is not None:
                try:
                    await client.close()
                except Exception as e:
                    self.logger.warning(f"Error closing {type(client).__name__}: {e}")
        if self.store:
            await self.store.close()


def main():
    """Console entry point."""
    config = get_config()
    configure_defaults(config.logging.level, config.logging.json_output)

    service = GatewayService(config)
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        service.logger.info("Service terminated by user")
    except ConfigError as e:
        service.logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        service.logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
