"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./convosim.yaml (working directory)
3. ~/.convosim/config.yaml (user home)

Without a file, defaults are seeded from the deployment env vars
(GOOGLE_CLOUD_PROJECT_ID, DIALOGFLOW_LOCATION, DIALOGFLOW_AGENT_ID,
DIALOGFLOW_ACCESS_TOKEN, MAX_CONCURRENCY, TEST_TIMEOUT_MS).

Environment variables override YAML: CONVOSIM_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator

from convosim.services.concurrency import DEFAULT_MAX_CONCURRENCY
from convosim.services.dialogflow_client import AgentLocator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

# Deployment env var -> (section, field)
_SEED_ENV_VARS: dict[str, tuple[str, str]] = {
    "GOOGLE_CLOUD_PROJECT_ID": ("agent", "project_id"),
    "DIALOGFLOW_LOCATION": ("agent", "location"),
    "DIALOGFLOW_AGENT_ID": ("agent", "agent_id"),
    "DIALOGFLOW_ACCESS_TOKEN": ("agent", "access_token"),
    "MAX_CONCURRENCY": ("execution", "max_concurrency"),
    "TEST_TIMEOUT_MS": ("execution", "timeout_ms"),
}


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


class AgentConfig(BaseModel):
    """Dialogflow CX agent the simulations run against."""

    project_id: str = ""
    location: str = "global"
    agent_id: str = ""
    language_code: str = "en"
    access_token: str = ""
    api_endpoint: str | None = None

    def to_locator(self) -> AgentLocator:
        """Build the AgentLocator used by the executor."""
        return AgentLocator(
            project_id=self.project_id,
            agent_id=self.agent_id,
            location=self.location or "global",
            language_code=self.language_code or "en",
        )


class ExecutionConfig(BaseModel):
    """Concurrency ceiling and per-turn timeout."""

    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    timeout_ms: int = 30000

    @field_validator("max_concurrency")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        """Clamp the ceiling to at least one running conversation."""
        return max(1, v)

    @field_validator("timeout_ms")
    @classmethod
    def positive_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeout_ms must be positive")
        return v

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class ServerConfig(BaseModel):
    """Configuration for the HTTP API process."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class ConvoSimConfig(BaseModel):
    """Top-level configuration for ConvoSim."""

    agent: AgentConfig = AgentConfig()
    execution: ExecutionConfig = ExecutionConfig()
    server: ServerConfig = ServerConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "convosim.yaml",
        Path.cwd() / "convosim.yml",
        Path.home() / ".convosim" / "config.yaml",
        Path.home() / ".convosim" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _coerce(section: str, field: str, value: str) -> Any:
    """Coerce an env var string to int or bool unless the field is a string."""
    section_model = ConvoSimConfig.model_fields[section].annotation
    field_info = getattr(section_model, "model_fields", {}).get(field)
    if field_info is not None and field_info.annotation in (str, str | None):
        return value
    try:
        return int(value)
    except ValueError:
        if value.lower() in ("true", "false"):
            return value.lower() == "true"
        return value


def _seed_from_env() -> dict[str, Any]:
    """Defaults taken from the plain deployment env vars."""
    data: dict[str, Any] = {}
    for env_name, (section, field) in _SEED_ENV_VARS.items():
        value = os.environ.get(env_name, "").strip()
        if not value:
            continue
        coerced = _coerce(section, field, value)
        if section == "execution" and not isinstance(coerced, int):
            logger.warning("Ignoring invalid %s=%r", env_name, value)
            continue
        data.setdefault(section, {})[field] = coerced
    return data


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge two section dicts, ``override`` winning per field."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for section, values in override.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply CONVOSIM_<SECTION>_<KEY> env var overrides to config data.

    For example, ``CONVOSIM_EXECUTION_MAX_CONCURRENCY`` maps to section
    ``execution``, field ``max_concurrency``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    prefix = "CONVOSIM_"
    known_sections = sorted(ConvoSimConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):].lower()
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
            data[matched_section][matched_field] = _coerce(
                matched_section, matched_field, value
            )
    return data


def load_config(config_path: str | None = None) -> ConvoSimConfig:
    """Load ConvoSim configuration.

    Args:
        config_path: Explicit path to config file. If None, searches
            standard locations (cwd, then ~/.convosim/).

    Returns:
        Parsed and validated ConvoSimConfig. Env-seeded defaults when no
        file is found.

    Raises:
        FileNotFoundError: If an explicit config_path does not exist.
    """
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    file_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}
        file_data = _resolve_env_vars_recursive(raw_data)

    data = _merge(_seed_from_env(), file_data)
    data = _apply_env_overrides(data)
    return ConvoSimConfig(**data)
