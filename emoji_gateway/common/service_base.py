"""Base class for Emoji Gateway services.

Provides:
- Background task lifecycle
- Optional FastAPI HTTP server with /health endpoint
- Structured logging
- Graceful shutdown on SIGTERM/SIGINT
- Central config loading
"""

import asyncio
import signal
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple, Awaitable

from fastapi import FastAPI
from fastapi.responses import JSONResponse
import uvicorn

from emoji_gateway.config import get_config, GatewayConfig
from emoji_gateway.common.logging import setup_logging


class GatewayServiceBase:
    """Base class for long-running gateway processes."""

    def __init__(self, name: str, http_port: Optional[int] = None, config: Optional[GatewayConfig] = None):
        self.name = name
        self.http_port = http_port
        self.config: GatewayConfig = config or get_config()
        self.logger = setup_logging(name)
        self._running = False
        self._tasks: List[asyncio.Task] = []
        self._app: Optional[FastAPI] = None
        self._server: Optional[uvicorn.Server] = None
        self._shutdown_task: Optional[asyncio.Task] = None

    # --- HTTP ---

    async def health(self) -> Tuple[bool, Dict[str, Any]]:
        """Override in subclass to report dependency checks as (healthy, checks)."""
        return True, {}

    def get_app(self) -> FastAPI:
        """Get or create the FastAPI app."""
        if self._app is None:
            self._app = FastAPI(title=f"Emoji Gateway - {self.name.title()} Service")

            @self._app.get("/health")
            async def health():
                healthy, checks = await self.health()
                body = {
                    "status": "healthy" if healthy else "degraded",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "checks": checks,
                }
                return JSONResponse(body, status_code=200 if healthy else 503)

        return self._app

    async def _run_http(self):
        """Run the FastAPI HTTP server."""
        app = self.get_app()
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.http_port,
            log_level="warning",
        )
        self._server = uvicorn.Server(config)
        self.logger.info(f"HTTP server listening on port {self.http_port}")
        await self._server.serve()

    # --- Lifecycle ---

    def start_task(self, coro: Awaitable) -> asyncio.Task:
        """Run a coroutine for the lifetime of the service."""
        task = asyncio.create_task(coro)
        self._tasks.append(task)
        return task

    async def setup(self):
        """Override in subclass for service-specific initialization."""
        pass

    async def teardown(self):
        """Override in subclass for service-specific cleanup."""
        pass

    async def run(self):
        """Main entry point. Starts HTTP and background tasks, runs until shutdown."""
        self._running = True
        self.logger.info(f"Starting {self.name} service...")

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

        try:
            if self.http_port:
                self.start_task(self._run_http())

            # Service-specific setup; failures here are fatal
            await self.setup()

            self.logger.info(f"{self.name} service started")

            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            pass
        finally:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.teardown()
            self.logger.info(f"{self.name} service stopped")

    def _on_signal(self, sig: signal.Signals) -> asyncio.Task:
        """Signal handler; keeps a reference so the shutdown task is not collected."""
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.create_task(self.shutdown(sig))
        return self._shutdown_task

    async def shutdown(self, sig: Optional[signal.Signals] = None):
        """Graceful shutdown."""
        if sig is not None:
            self.logger.info(f"Received {sig.name}, shutting down...")
        else:
            self.logger.info(f"Shutting down {self.name}...")
        self._running = False
        if self._server is not None:
            self._server.should_exit = True
        for task in self._tasks:
            task.cancel()
