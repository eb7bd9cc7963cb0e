"""
Application configuration.

Values come from the process environment, optionally seeded from a ``.env``
file. Every setting has a default so a bare desktop install starts without
any configuration.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://plex.tv/api/v2"
DEFAULT_HOME = Path.home() / ".plexbooks"

_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off", ""}


class ConfigurationError(Exception):
    """Raised when a configuration value cannot be parsed."""


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _parse_positive(name: str, value: str, kind=float):
    try:
        parsed = kind(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    if parsed <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return parsed


@dataclass(slots=True)
class AppConfiguration:
    """Runtime settings for the audiobook companion."""
    api_base_url: str = DEFAULT_API_BASE_URL
    request_timeout: float = 5.0
    pin_timeout_seconds: int = 900
    store_path: Path = field(default_factory=lambda: DEFAULT_HOME / "store.json")
    download_dir: Path = field(default_factory=lambda: DEFAULT_HOME / "books")
    use_mock_client: bool = False
    reset_store: bool = False
    product_name: str = "plexbooks"
    version: str = "0.1.0"

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        dotenv: bool = True,
    ) -> "AppConfiguration":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            dotenv: If True, load a ``.env`` file into the environment first

        Returns:
            Populated AppConfiguration

        Raises:
            ConfigurationError: If a value is present but invalid
        """
        if dotenv and environ is None:
            load_dotenv()
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("PLEXBOOKS_API_BASE_URL"):
            config.api_base_url = env["PLEXBOOKS_API_BASE_URL"].rstrip("/")
        if env.get("PLEXBOOKS_REQUEST_TIMEOUT"):
            config.request_timeout = _parse_positive(
                "PLEXBOOKS_REQUEST_TIMEOUT", env["PLEXBOOKS_REQUEST_TIMEOUT"]
            )
        if env.get("PLEXBOOKS_PIN_TIMEOUT"):
            config.pin_timeout_seconds = _parse_positive(
                "PLEXBOOKS_PIN_TIMEOUT", env["PLEXBOOKS_PIN_TIMEOUT"], int
            )
        if env.get("PLEXBOOKS_STORE_PATH"):
            config.store_path = Path(env["PLEXBOOKS_STORE_PATH"]).expanduser()
        if env.get("PLEXBOOKS_DOWNLOAD_DIR"):
            config.download_dir = Path(env["PLEXBOOKS_DOWNLOAD_DIR"]).expanduser()
        if "PLEXBOOKS_USE_MOCK" in env:
            config.use_mock_client = _parse_bool("PLEXBOOKS_USE_MOCK", env["PLEXBOOKS_USE_MOCK"])
        if "PLEXBOOKS_RESET_STORE" in env:
            config.reset_store = _parse_bool("PLEXBOOKS_RESET_STORE", env["PLEXBOOKS_RESET_STORE"])

        logger.debug(
            "Configuration loaded: api=%s store=%s mock=%s",
            config.api_base_url,
            config.store_path,
            config.use_mock_client,
        )
        return config
