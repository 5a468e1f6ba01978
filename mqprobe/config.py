"""Configuration module for mqprobe.

This module provides configuration management for the harness, loading
settings from .mqprobe/config file (KEY=value format) with fallback to
environment variables.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Default paths relative to the working directory
MQPROBE_DIR = ".mqprobe"
CONFIG_FILE = "config"

# Testbed repository and identities the harness was built against
DEFAULT_OWNER = "0x5b-org"
DEFAULT_REPO = "test-github-merge-queues"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_APP_ID = 1178750
DEFAULT_APP_INSTALLATION_ID = 65717473
# GitHub Actions app, which reports the required merge_queue_check
DEFAULT_REQUIRED_CHECK_INTEGRATION_ID = 15368


class MissingConfigError(ValueError):
    """Raised when required credentials are absent from the configuration."""

    def __init__(self, missing: list[str], source: str):
        super().__init__(f"Missing required configuration in {source}: {', '.join(missing)}")
        self.missing = missing


@dataclass
class Config:
    """Harness configuration.

    Attributes:
        github_token: Personal access token for user-equivalent operations
            (PR creation, auto-merge enabling, reads)
        app_private_key: PEM private key of the automation GitHub App
        app_id: GitHub App id of the automation identity
        app_installation_id: Installation id of the app on the testbed owner
        owner: Owner (organization) of the testbed repository
        repo: Name of the testbed repository
        api_url: Base URL of the GitHub REST API
        bypass_actor_id: Integration id allowed to bypass the rulesets
            (defaults to the app id)
        required_check_integration_id: Integration that must report the
            required status check
        max_concurrent_scenarios: Maximum number of scenarios set up in parallel
    """

    github_token: str
    app_private_key: str
    app_id: int = DEFAULT_APP_ID
    app_installation_id: int = DEFAULT_APP_INSTALLATION_ID
    owner: str = DEFAULT_OWNER
    repo: str = DEFAULT_REPO
    api_url: str = DEFAULT_API_URL
    bypass_actor_id: int | None = None
    required_check_integration_id: int = DEFAULT_REQUIRED_CHECK_INTEGRATION_ID
    max_concurrent_scenarios: int = 6
    log_file: str | None = None
    log_size: int = 10 * 1024 * 1024  # 10MB default
    log_backups: int = 5
    otel_endpoint: str = ""
    otel_service_name: str = "mqprobe"

    def __post_init__(self) -> None:
        if self.bypass_actor_id is None:
            self.bypass_actor_id = self.app_id

    @property
    def repo_full_name(self) -> str:
        """Repository in 'owner/repo' format."""
        return f"{self.owner}/{self.repo}"


def parse_config_file(config_path: Path) -> dict[str, str]:
    """Parse a KEY=value config file.

    Args:
        config_path: Path to the config file

    Returns:
        Dictionary of key-value pairs
    """
    config = {}
    with open(config_path) as f:
        for line in f:
            line = line.strip()
            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Remove surrounding quotes if present
                if (value.startswith('"') and value.endswith('"')) or (
                    value.startswith("'") and value.endswith("'")
                ):
                    value = value[1:-1]
                config[key] = value
    return config


def _parse_int(data: Mapping[str, str], key: str, default: int) -> int:
    """Parse an optional integer setting, naming the key on failure."""
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e


def _read_private_key(data: Mapping[str, str]) -> str | None:
    """Resolve the app private key from an inline value or a key file.

    Inline keys from environment variables usually have their newlines
    escaped, so literal "\\n" sequences are expanded.
    """
    private_key = data.get("GITHUB_APP_PRIVATE_KEY")
    if private_key:
        return private_key.replace("\\n", "\n")

    key_path = data.get("GITHUB_APP_PRIVATE_KEY_PATH")
    if key_path:
        try:
            return Path(key_path).expanduser().read_text()
        except OSError as e:
            raise ValueError(f"Failed to read GITHUB_APP_PRIVATE_KEY_PATH {key_path}: {e}") from e

    return None


def build_config(data: Mapping[str, str], source: str) -> Config:
    """Build a Config from raw KEY=value settings.

    Args:
        data: Raw settings (parsed config file or os.environ)
        source: Human-readable origin used in error messages

    Returns:
        Config: A validated Config instance

    Raises:
        MissingConfigError: If required settings are missing
        ValueError: If a setting is malformed
    """
    # Collect all missing required vars
    missing_vars: list[str] = []

    github_token = data.get("GITHUB_TOKEN", "").strip()
    if not github_token:
        missing_vars.append("GITHUB_TOKEN")

    app_private_key = _read_private_key(data)
    if not app_private_key:
        missing_vars.append("GITHUB_APP_PRIVATE_KEY")

    if missing_vars:
        raise MissingConfigError(missing_vars, source)

    app_id = _parse_int(data, "GITHUB_APP_ID", DEFAULT_APP_ID)
    max_concurrent_scenarios = _parse_int(data, "MAX_CONCURRENT_SCENARIOS", 6)
    if max_concurrent_scenarios < 1:
        raise ValueError("MAX_CONCURRENT_SCENARIOS must be at least 1")

    log_level = data.get("LOG_LEVEL")
    if log_level:
        os.environ["LOG_LEVEL"] = log_level  # Picked up by setup_logging()

    return Config(
        github_token=github_token,
        app_private_key=app_private_key or "",
        app_id=app_id,
        app_installation_id=_parse_int(
            data, "GITHUB_APP_INSTALLATION_ID", DEFAULT_APP_INSTALLATION_ID
        ),
        owner=data.get("MQPROBE_OWNER") or DEFAULT_OWNER,
        repo=data.get("MQPROBE_REPO") or DEFAULT_REPO,
        api_url=(data.get("GITHUB_API_URL") or DEFAULT_API_URL).rstrip("/"),
        bypass_actor_id=_parse_int(data, "BYPASS_ACTOR_ID", app_id),
        required_check_integration_id=_parse_int(
            data, "REQUIRED_CHECK_INTEGRATION_ID", DEFAULT_REQUIRED_CHECK_INTEGRATION_ID
        ),
        max_concurrent_scenarios=max_concurrent_scenarios,
        log_file=data.get("LOG_FILE") or None,
        log_size=_parse_int(data, "LOG_SIZE", 10 * 1024 * 1024),
        log_backups=_parse_int(data, "LOG_BACKUPS", 5),
        otel_endpoint=data.get("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
        otel_service_name=data.get("OTEL_SERVICE_NAME") or "mqprobe",
    )


def load_config_from_file(config_path: Path) -> Config:
    """Load configuration from a KEY=value config file.

    Raises:
        ValueError: If required fields are missing or invalid
        FileNotFoundError: If the config file doesn't exist
    """
    return build_config(parse_config_file(config_path), source=str(config_path))


def load_config_from_env() -> Config:
    """Load configuration from environment variables.

    Raises:
        ValueError: If required environment variables are missing
    """
    return build_config(os.environ, source="environment")


def load_config() -> Config:
    """Load configuration from config file or environment variables.

    Priority:
    1. Config file at .mqprobe/config
    2. Environment variables

    Raises:
        ValueError: If required configuration is missing
    """
    config_path = Path.cwd() / MQPROBE_DIR / CONFIG_FILE

    if config_path.exists():
        logger.debug(f"Loading configuration from {config_path}")
        return load_config_from_file(config_path)
    return load_config_from_env()
