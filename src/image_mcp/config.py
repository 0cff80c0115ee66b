"""Server configuration: CLI options, environment variables, defaults."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:9292/v1"
DEFAULT_API_KEY = "key"
DEFAULT_TIMEOUT_MS = 60000
DEFAULT_MAX_RETRIES = 3
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

MIN_TIMEOUT_MS = 1000
MAX_TIMEOUT_MS = 300000
MAX_RETRIES_LIMIT = 5

# Field name -> environment variable
ENV_VARS = {
    "api_key": "OPENAI_API_KEY",
    "base_url": "OPENAI_BASE_URL",
    "model": "OPENAI_MODEL",
    "timeout_ms": "OPENAI_TIMEOUT",
    "max_retries": "OPENAI_MAX_RETRIES",
    "use_http": "MCP_USE_HTTP",
    "host": "MCP_HOST",
    "port": "MCP_PORT",
}


@dataclass(frozen=True)
class ServerConfig:
    """Resolved configuration, built once at startup and passed explicitly."""

    api_key: str = DEFAULT_API_KEY
    base_url: str = DEFAULT_BASE_URL
    model: Optional[str] = None
    streaming: bool = True
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    use_http: bool = False
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def streaming_enabled(self) -> bool:
        """Streaming only applies to the HTTP/SSE transport; stdio never streams."""
        return self.use_http and self.streaming

    def validate(self) -> None:
        """Raise ConfigError if any field is out of range."""
        if not self.api_key:
            raise ConfigError("API key is required")

        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"Invalid base URL: {self.base_url}")

        if not MIN_TIMEOUT_MS <= self.timeout_ms <= MAX_TIMEOUT_MS:
            raise ConfigError(
                f"Timeout must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} ms"
            )

        if not 0 <= self.max_retries <= MAX_RETRIES_LIMIT:
            raise ConfigError(f"Max retries must be between 0 and {MAX_RETRIES_LIMIT}")

        if not 0 < self.port < 65536:
            raise ConfigError(f"Invalid port: {self.port}")


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def resolve_config(
    cli_options: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Merge configuration sources into a validated ServerConfig.

    Precedence per field: CLI option > environment variable > default.
    A CLI value of ``None`` means "not given" and falls through.

    Args:
        cli_options: Parsed CLI options keyed by ServerConfig field name
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Validated ServerConfig

    Raises:
        ConfigError: If a value is malformed or out of range
    """
    env = os.environ if environ is None else environ

    def pick(field_name: str) -> Any:
        value = cli_options.get(field_name)
        if value is not None:
            return value
        env_value = env.get(ENV_VARS[field_name]) if field_name in ENV_VARS else None
        return env_value or None

    values: dict[str, Any] = {}

    for field_name in ("api_key", "base_url", "model", "host"):
        value = pick(field_name)
        if value is not None:
            values[field_name] = value

    for field_name in ("timeout_ms", "max_retries", "port"):
        value = pick(field_name)
        if value is not None:
            values[field_name] = _parse_int(ENV_VARS[field_name], value)

    # Streaming has no environment variable, only --streaming/--no-streaming.
    if cli_options.get("streaming") is not None:
        values["streaming"] = bool(cli_options["streaming"])

    if cli_options.get("use_http"):
        values["use_http"] = True
    else:
        values["use_http"] = env.get(ENV_VARS["use_http"], "").lower() == "true"

    config = ServerConfig(**values)
    config.validate()

    logger.debug(
        f"Resolved config: base_url={config.base_url} model={config.model or '(default)'} "
        f"timeout={config.timeout_ms}ms retries={config.max_retries} "
        f"transport={'http' if config.use_http else 'stdio'}"
    )
    return config
