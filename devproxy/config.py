"""Configuration from devproxy.yml and DEVPROXY_* environment variables"""

import logging
import os
from pathlib import Path

import yaml

from .registry import SLUG_PATTERN
from .router.utils import parse_target
from .structured_logging import LOG_FORMATS, LOG_LEVELS

logger = logging.getLogger("devproxy.config")

CONFIG_FILENAMES = ("devproxy.yml", "devproxy.yaml")
TRUTHY = {"1", "true", "yes", "on"}


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Explicit DEVPROXY_CONFIG path, else search current and parent directories"""
    env_path = os.getenv("DEVPROXY_CONFIG")
    if env_path:
        return Path(env_path)

    current = Path(start_path or os.getcwd()).resolve()
    # Search up to 10 levels
    for _ in range(10):
        for filename in CONFIG_FILENAMES:
            config_path = current / filename
            if config_path.is_file():
                return config_path
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None


class ProxyConfig:
    """
    Settings for `devproxy serve`.

    Schema (devproxy.yml):
        port: int            # preferred listening port (default: first free default)
        log_level: str       # DEBUG|INFO|WARNING|ERROR|CRITICAL
        log_format: str      # text|json
        log_file: str        # optional path
        log_requests: bool   # one access log line per request
        routes:              # routes registered at startup
          web: 3000
          api: 127.0.0.1:8000

    Environment variables override the file; CLI flags override both.
    """

    DEFAULT_CONFIG = {
        "port": None,
        "log_level": "INFO",
        "log_format": "text",
        "log_file": None,
        "log_requests": False,
        "routes": {},
    }

    def __init__(self, config_file: Path | None = None, data: dict | None = None):
        self.config_file = config_file
        self.config: dict = {**self.DEFAULT_CONFIG, **(data or {})}

    @classmethod
    def load(cls, path: Path | str | None = None, apply_env: bool = True) -> "ProxyConfig":
        """
        Load defaults, then the YAML file (if any), then the environment.

        Raises:
            ValueError: the file exists but is not a YAML mapping
            OSError: the file cannot be read
        """
        config_file = Path(path) if path else find_config_file()
        data: dict = {}
        if config_file is not None:
            with open(config_file, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"{config_file}: expected a mapping at top level")
            data = loaded
            logger.debug("Loaded config from %s", config_file)

        config = cls(config_file, data)
        if apply_env:
            config.apply_env()
        return config

    def apply_env(self) -> None:
        port = os.getenv("DEVPROXY_PORT")
        if port:
            self.config["port"] = int(port) if port.strip().isdigit() else port
        for key in ("log_level", "log_format", "log_file"):
            value = os.getenv(f"DEVPROXY_{key.upper()}")
            if value:
                self.config[key] = value
        log_requests = os.getenv("DEVPROXY_LOG_REQUESTS")
        if log_requests is not None:
            self.config["log_requests"] = log_requests.strip().lower() in TRUTHY

    def validate(self) -> tuple[bool, list[str]]:
        """Return (is_valid, errors)"""
        errors: list[str] = []

        port = self.config.get("port")
        if port is not None and (isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536):
            errors.append(f"port must be between 1 and 65535, got {port!r}")

        level = str(self.config.get("log_level") or "").upper()
        if level not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(sorted(LOG_LEVELS))}")

        log_format = str(self.config.get("log_format") or "").lower()
        if log_format not in LOG_FORMATS:
            errors.append("log_format must be 'text' or 'json'")

        routes = self.config.get("routes") or {}
        if not isinstance(routes, dict):
            errors.append("routes must be a mapping of name -> target")
        else:
            for name, target in routes.items():
                if not isinstance(name, str) or not SLUG_PATTERN.match(name):
                    errors.append(f"route '{name}': invalid name (lowercase alphanumeric with hyphens)")
                if parse_target(target) is None:
                    errors.append(f"route '{name}': invalid target {target!r}")

        return (not errors, errors)

    @property
    def port(self) -> int | None:
        return self.config.get("port") or None

    @property
    def log_level(self) -> str:
        return str(self.config.get("log_level") or "INFO").upper()

    @property
    def log_format(self) -> str:
        return str(self.config.get("log_format") or "text").lower()

    @property
    def log_file(self) -> str | None:
        return self.config.get("log_file") or None

    @property
    def log_requests(self) -> bool:
        return bool(self.config.get("log_requests"))

    @property
    def routes(self) -> dict[str, tuple[str, int]]:
        """Seed routes with parsed targets; invalid entries are skipped"""
        parsed = {}
        for name, target in (self.config.get("routes") or {}).items():
            value = parse_target(target)
            if value is not None:
                parsed[str(name)] = value
        return parsed
