"""Config management for openmemory-connector.

Values come from built-in defaults, then the optional JSON config file,
then environment variables (a local .env file is loaded first).
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".openmemory-connector"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULTS = {
    "host": "0.0.0.0",
    "port": 8080,
    "access_token_ttl": 3600,
    "refresh_token_ttl": 30 * 24 * 60 * 60,
    "session_max_age": 30 * 60,
    "sweep_interval": 5 * 60,
    "log_level": "INFO",
    "log_format": "plain",
}

# config key -> environment variables, first match wins
ENV_VARS = {
    "public_url": ("SERVER_URL",),
    "api_key": ("MCP_API_KEY",),
    "host": ("MCP_HOST",),
    "port": ("MCP_PORT", "PORT"),
    "access_token_ttl": ("ACCESS_TOKEN_TTL",),
    "refresh_token_ttl": ("REFRESH_TOKEN_TTL",),
    "session_max_age": ("SESSION_MAX_AGE",),
    "sweep_interval": ("SWEEP_INTERVAL",),
    "log_level": ("LOG_LEVEL",),
    "log_format": ("LOG_FORMAT",),
}

INT_KEYS = {"port", "access_token_ttl", "refresh_token_ttl", "session_max_age", "sweep_interval"}


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = dict(DEFAULTS)
        self.data.update(data or {})

    @property
    def public_url(self) -> Optional[str]:
        url = self.data.get("public_url")
        return url.rstrip("/") if url else None

    @property
    def api_key(self) -> Optional[str]:
        return self.data.get("api_key") or None

    @property
    def host(self) -> str:
        return self.data["host"]

    @property
    def port(self) -> int:
        return int(self.data["port"])

    @property
    def access_token_ttl(self) -> int:
        return int(self.data["access_token_ttl"])

    @property
    def refresh_token_ttl(self) -> int:
        return int(self.data["refresh_token_ttl"])

    @property
    def session_max_age(self) -> int:
        return int(self.data["session_max_age"])

    @property
    def sweep_interval(self) -> int:
        return int(self.data["sweep_interval"])

    @property
    def log_level(self) -> str:
        return str(self.data["log_level"]).upper()

    @property
    def log_format(self) -> str:
        return str(self.data["log_format"]).lower()

    @property
    def base_url(self) -> str:
        """Public URL used to build absolute links in discovery documents."""
        return self.public_url or f"http://localhost:{self.port}"


def _read_env() -> dict:
    data = {}
    for key, names in ENV_VARS.items():
        for name in names:
            value = os.getenv(name)
            if value is None or value == "":
                continue
            if key in INT_KEYS:
                try:
                    value = int(value)
                except ValueError:
                    logger.warning(f"[CONFIG] Ignoring non-integer {name}={value!r}")
                    break
            data[key] = value
            break
    return data


def load_config(config_file: Path = None) -> Config:
    """Load config from file and environment."""
    load_dotenv()
    config_file = config_file or CONFIG_FILE

    data = {}
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"[CONFIG] Could not read {config_file}: {e}")
            data = {}

    data.update(_read_env())
    return Config(data)


def save_config(data: dict, config_file: Path = None) -> None:
    """Save config to file."""
    config_file = config_file or CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    with open(config_file, "w") as f:
        json.dump(data, f, indent=2)

    # Owner read/write only, the file may hold the static API key
    os.chmod(config_file, 0o600)
