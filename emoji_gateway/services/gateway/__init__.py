"""
Emoji Gateway - Gateway Service

Process wiring plus /health and /metrics.
"""
from .api import GatewayService, main

__all__ = ["GatewayService", "main"]
