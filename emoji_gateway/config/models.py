"""
Configuration dataclass models for the Emoji Gateway.
"""
from dataclasses import dataclass, field


@dataclass
class MisskeyConfig:
    """Misskey instance configuration."""
    host: str = ""  # e.g. misskey.example.com
    token: str = ""  # admin-capable API token, loaded from env
    timeout: float = 30.0


@dataclass
class RendererConfig:
    """Font/renderer service configuration."""
    base_url: str = ""
    timeout: float = 30.0


@dataclass
class RedisConfig:
    """Valkey/Redis server configuration."""
    host: str = "localhost"
    port: int = 6379
    password: str = ""
    db: int = 0


@dataclass
class OpenAIConfig:
    """AI planner configuration."""
    api_key: str = ""
    model: str = "gpt-5-mini-2025-08-07"
    max_output_tokens: int = 2000
    timeout: float = 60.0


@dataclass
class ServerConfig:
    """Health/metrics HTTP server configuration."""
    port: int = 3000


@dataclass
class LoggingConfig:
    """Log verbosity and format."""
    level: str = "info"  # debug, info, warn, error
    json_output: bool = False


@dataclass
class RateLimitConfig:
    """Per-user sliding window."""
    max_requests: int = 10
    window_seconds: int = 60


@dataclass
class StateConfig:
    """Conversation state lifetime."""
    ttl_seconds: int = 600  # 10 minutes
    dedup_ttl_seconds: int = 300


@dataclass
class GatewayConfig:
    """Root configuration object containing all subsystem configs."""
    misskey: MisskeyConfig = field(default_factory=MisskeyConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    state: StateConfig = field(default_factory=StateConfig)
