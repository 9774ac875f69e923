"""
Emoji Gateway configuration management.

Provides centralized configuration loading from TOML files with environment variable overrides.

Usage:
    from emoji_gateway.config import get_config

    config = get_config()
    host = config.misskey.host
    max_requests = config.rate_limit.max_requests
"""
from .loader import load_config, get_config, validate_config, ConfigError
from .models import GatewayConfig

__all__ = ["load_config", "get_config", "validate_config", "ConfigError", "GatewayConfig"]
