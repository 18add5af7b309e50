"""Configuration for safari-markdown.

Simple configuration loader from environment variables. The CLI calls
`load_dotenv()` first, so a `.env` file in the working directory works too.
"""

import os
from dataclasses import dataclass, replace
from functools import lru_cache
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .runtime import get_version

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_MODEL = "gpt-5.3-codex-spark"
DEFAULT_EFFORT = "medium"
DEFAULT_MAX_CHARS = 60_000
CLIENT_NAME = "SafariMarkdown"
MAX_PORT = 65535


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _check_port(key: str, port: int) -> int:
    if not 1 <= port <= MAX_PORT:
        raise ConfigError(f"{key} must be between 1 and {MAX_PORT}, got {port}")
    return port


def _parse_timeout(key: str, raw: str) -> Optional[float]:
    """Empty or non-positive means no timeout."""
    if not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number of seconds, got {raw!r}") from None
    return value if value > 0 else None


@lru_cache(maxsize=1)
def load_config() -> dict:
    """
    Load application configuration from environment variables.

    Returns:
        dict with configuration values
    """
    return {
        # Codex app-server endpoint (always loopback in practice)
        "HOST": os.getenv("CODEX_HOST", DEFAULT_HOST),
        "PORT": _check_port(
            "CODEX_PORT", _parse_int("CODEX_PORT", os.getenv("CODEX_PORT", str(DEFAULT_PORT)))
        ),

        # thread/start and turn/start parameters
        "MODEL": os.getenv("SAFARI_MARKDOWN_MODEL", DEFAULT_MODEL),
        "EFFORT": os.getenv("SAFARI_MARKDOWN_EFFORT", DEFAULT_EFFORT),
        "CWD": os.getenv("SAFARI_MARKDOWN_CWD", str(Path.home())),

        # Seconds without progress before a conversion fails. Unset = wait forever.
        "STEP_TIMEOUT": _parse_timeout(
            "SAFARI_MARKDOWN_STEP_TIMEOUT", os.getenv("SAFARI_MARKDOWN_STEP_TIMEOUT", "")
        ),

        # Page body limit in characters (~4 chars per token)
        "MAX_CHARS": _parse_int(
            "SAFARI_MARKDOWN_MAX_CHARS", os.getenv("SAFARI_MARKDOWN_MAX_CHARS", str(DEFAULT_MAX_CHARS))
        ),

        # Check Sec-WebSocket-Accept during the handshake
        "VERIFY_ACCEPT": os.getenv("SAFARI_MARKDOWN_VERIFY_ACCEPT", "false").lower() == "true",
    }


def get_config_value(key: str, default=None):
    """Get a single configuration value."""
    config = load_config()
    return config.get(key, default)


@dataclass(frozen=True)
class ConverterConfig:
    """Settings for one MarkdownConverter."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    model: str = DEFAULT_MODEL
    effort: str = DEFAULT_EFFORT
    cwd: str = ""
    client_name: str = CLIENT_NAME
    client_version: str = ""
    step_timeout: Optional[float] = None
    verify_accept: bool = False

    def __post_init__(self):
        _check_port("port", self.port)
        if not self.cwd:
            object.__setattr__(self, "cwd", str(Path.home()))
        if not self.client_version:
            object.__setattr__(self, "client_version", get_version())

    @classmethod
    def from_env(cls, **overrides) -> "ConverterConfig":
        """Build from `load_config()`, then apply non-None `overrides`."""
        config = load_config()
        base = cls(
            host=config["HOST"],
            port=config["PORT"],
            model=config["MODEL"],
            effort=config["EFFORT"],
            cwd=config["CWD"],
            step_timeout=config["STEP_TIMEOUT"],
            verify_accept=config["VERIFY_ACCEPT"],
        )
        return replace(base, **{k: v for k, v in overrides.items() if v is not None})
