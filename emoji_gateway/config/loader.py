"""
Configuration loader with TOML file parsing and environment variable overrides.
"""
import os
import logging
from pathlib import Path
from typing import Optional, Any, Dict, List

# Try Python 3.11+ tomllib first, fallback to tomli for older versions
try:
    import tomllib
except ModuleNotFoundError:
    try:
        import tomli as tomllib
    except ImportError:
        raise ImportError(
            "Neither tomllib (Python 3.11+) nor tomli package found. "
            "Install tomli: pip install tomli"
        )

from .models import GatewayConfig

logger = logging.getLogger(__name__)

_config: Optional[GatewayConfig] = None

CONFIG_ENV_VAR = "EMOJI_GATEWAY_CONFIG"

CONFIG_PATHS = [
    Path("/etc/emoji-gateway/gateway.toml"),
    Path("config/gateway.toml"),
    Path.home() / ".config" / "emoji-gateway" / "gateway.toml",
]

LOG_LEVELS = ("debug", "info", "warn", "error")


class ConfigError(ValueError):
    """Raised when required settings are missing or invalid."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("Invalid configuration: " + "; ".join(problems))


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load TOML file and return parsed dict."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _apply_env_overrides(config: GatewayConfig, environ: Optional[Dict[str, str]] = None) -> GatewayConfig:
    """
    Override config with environment variables.
    Variable names match the deployment's .env file, e.g. MISSKEY_HOST
    overrides config.misskey.host.
    """
    env = os.environ if environ is None else environ

    env_map = {
        # Misskey
        "MISSKEY_HOST": lambda v: setattr(config.misskey, "host", v),
        "MISSKEY_TOKEN": lambda v: setattr(config.misskey, "token", v),

        # Renderer
        "RENDERER_BASE_URL": lambda v: setattr(config.renderer, "base_url", v),

        # Valkey
        "VALKEY_HOST": lambda v: setattr(config.redis, "host", v),
        "VALKEY_PORT": lambda v: setattr(config.redis, "port", int(v)),
        "VALKEY_PASSWORD": lambda v: setattr(config.redis, "password", v),
        "VALKEY_DB": lambda v: setattr(config.redis, "db", int(v)),

        # OpenAI
        "OPENAI_API_KEY": lambda v: setattr(config.openai, "api_key", v),
        "OPENAI_MODEL": lambda v: setattr(config.openai, "model", v),

        # Server / logging
        "PORT": lambda v: setattr(config.server, "port", int(v)),
        "LOG_LEVEL": lambda v: setattr(config.logging, "level", v.lower()),
        "LOG_JSON": lambda v: setattr(config.logging, "json_output", _parse_bool(v)),

        # Rate limiting
        "RATE_LIMIT_MAX_REQUESTS": lambda v: setattr(config.rate_limit, "max_requests", int(v)),
        "RATE_LIMIT_WINDOW_SECONDS": lambda v: setattr(config.rate_limit, "window_seconds", int(v)),

        # State TTL
        "STATE_TTL_SECONDS": lambda v: setattr(config.state, "ttl_seconds", int(v)),
    }

    for env_var, setter in env_map.items():
        value = env.get(env_var)
        if value is not None:
            try:
                setter(value)
                logger.debug(f"Config override from env: {env_var}")
            except (ValueError, TypeError) as e:
                logger.warning(f"Failed to apply env override {env_var}={value}: {e}")

    return config


def _toml_to_config(data: Dict[str, Any]) -> GatewayConfig:
    """Convert TOML dict to GatewayConfig dataclass."""
    config = GatewayConfig()

    section_map = {
        "misskey": config.misskey,
        "renderer": config.renderer,
        "redis": config.redis,
        "openai": config.openai,
        "server": config.server,
        "logging": config.logging,
        "rate_limit": config.rate_limit,
        "state": config.state,
    }

    for section_name, section_obj in section_map.items():
        if section_name in data:
            for k, v in data[section_name].items():
                if hasattr(section_obj, k):
                    setattr(section_obj, k, v)
                else:
                    logger.warning(f"Unknown config key {section_name}.{k}")

    return config


def validate_config(config: GatewayConfig) -> GatewayConfig:
    """
    Check required settings and value ranges.

    Raises:
        ConfigError: listing every problem found.
    """
    problems = []

    required = {
        "MISSKEY_HOST": config.misskey.host,
        "MISSKEY_TOKEN": config.misskey.token,
        "RENDERER_BASE_URL": config.renderer.base_url,
        "OPENAI_API_KEY": config.openai.api_key,
    }
    for name, value in required.items():
        if not value:
            problems.append(f"{name} is required")

    base_url = config.renderer.base_url
    if base_url and not base_url.startswith(("http://", "https://")):
        problems.append(f"RENDERER_BASE_URL must be an http(s) URL, got {base_url!r}")

    if config.logging.level not in LOG_LEVELS:
        problems.append(
            f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {config.logging.level!r}"
        )

    if config.rate_limit.max_requests < 1:
        problems.append("RATE_LIMIT_MAX_REQUESTS must be at least 1")
    if config.rate_limit.window_seconds < 1:
        problems.append("RATE_LIMIT_WINDOW_SECONDS must be at least 1")
    if config.state.ttl_seconds < 1:
        problems.append("STATE_TTL_SECONDS must be at least 1")

    if problems:
        raise ConfigError(problems)
    return config


def load_config(config_path: Optional[Path] = None) -> GatewayConfig:
    """
    Load configuration from TOML file with environment variable overrides.

    Args:
        config_path: Optional explicit path to config file. If None, the
            EMOJI_GATEWAY_CONFIG variable and then the default paths are searched.

    Returns:
        GatewayConfig instance with loaded configuration.
    """
    global _config

    if config_path:
        paths = [config_path]
    elif os.environ.get(CONFIG_ENV_VAR):
        paths = [Path(os.environ[CONFIG_ENV_VAR])]
    else:
        paths = CONFIG_PATHS

    data = {}
    for path in paths:
        if path.exists():
            try:
                data = _load_toml(path)
                logger.info(f"Loaded config from {path}")
                break
            except Exception as e:
                logger.error(f"Failed to load config from {path}: {e}")
                continue
    else:
        logger.debug("No config file found, using defaults and environment")

    config = _toml_to_config(data)
    config = _apply_env_overrides(config)
    _config = config
    return config


def get_config() -> GatewayConfig:
    """
    Get cached config or load if not yet loaded.

    Returns:
        GatewayConfig instance.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
