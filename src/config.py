"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. Explicit path (``CHATRELAY_CONFIG_PATH`` or the ``config_path`` argument)
2. ./chatrelay.yaml (working directory)
3. ~/.chatrelay/config.yaml (user home)

Environment variables override YAML: CHATRELAY_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file is found, defaults plus env overrides are used.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "CHATRELAY_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """HTTP server settings for the API process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class BridgeConfig(BaseModel):
    """Connection settings for the WhatsApp-Web bridge sidecar.

    The bridge owns the browser session; ChatRelay drives it over HTTP
    and receives its events on the bridge webhook route.
    """

    base_url: str = "http://127.0.0.1:3000"
    session_name: str = "default"
    api_key: str = ""
    request_timeout_seconds: float = 30.0


class SessionConfig(BaseModel):
    """Bounded waits around session start."""

    start_timeout_seconds: float = Field(default=60.0, gt=0)
    send_start_timeout_seconds: float = Field(default=30.0, gt=0)


class ResponderConfig(BaseModel):
    """Automated responder selection."""

    kind: Literal["echo", "anthropic"] = "echo"
    model: str = "claude-haiku-4-5-20251001"
    max_tokens: int = 300
    system_prompt: str = (
        "You are a helpful customer support assistant replying on WhatsApp. "
        "Answer briefly and politely. If you cannot help, say a human "
        "operator will follow up."
    )


class ChatRelayConfig(BaseModel):
    """Top-level configuration for the ChatRelay bridge."""

    server: ServerConfig = ServerConfig()
    bridge: BridgeConfig = BridgeConfig()
    session: SessionConfig = SessionConfig()
    responder: ResponderConfig = ResponderConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "chatrelay.yaml",
        Path.cwd() / "chatrelay.yml",
        Path.home() / ".chatrelay" / "config.yaml",
        Path.home() / ".chatrelay" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply CHATRELAY_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix. For example,
    ``CHATRELAY_SESSION_START_TIMEOUT_SECONDS`` maps to section
    ``session``, field ``start_timeout_seconds``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    known_sections = sorted(
        ChatRelayConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Coerce to int, bool, or keep as string; pydantic widens int to float
            try:
                data[matched_section][matched_field] = int(value)
            except ValueError:
                if value.lower() in ("true", "false"):
                    data[matched_section][matched_field] = value.lower() == "true"
                else:
                    data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> ChatRelayConfig:
    """Load ChatRelay configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, uses
            CHATRELAY_CONFIG_PATH, then searches standard locations.

    Returns:
        Parsed and validated ChatRelayConfig.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    config_path = config_path or os.environ.get("CHATRELAY_CONFIG_PATH") or None
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return ChatRelayConfig(**data)
