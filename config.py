"""
Configuration module for the jobpipeline MCP server.

Provides centralized configuration management with support for:
- Environment variables (prefix ``JOBPIPELINE_``)
- A ``.env`` file at the project root
- Default values and path resolution
- Logging configuration
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file at project root
_env_path = Path(__file__).resolve().parent / ".env"
load_dotenv(dotenv_path=_env_path)

ENV_PREFIX = "JOBPIPELINE_"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


class Config:
    """
    Configuration class for pipeline sessions and the MCP server.

    Supports configuration via environment variables (and .env file) with sensible defaults.
    All relative paths are resolved against the project root.
    """

    def __init__(self):
        """Initialize configuration from environment variables and defaults."""
        self._project_root = Path(__file__).resolve().parent
        self._warnings: List[str] = []

        # Storage
        self.db_path = self._resolve_path(_env("DB"), "data/jobs.db")
        self.schedule_store_path = self._resolve_path(_env("SCHEDULE_STORE"), "data/schedule.json")

        # Logging configuration
        self.log_level = (_env("LOG_LEVEL") or "INFO").upper()
        log_env = _env("LOG_FILE")
        self.log_file = self._resolve_path(log_env, None) if log_env else None

        # Server configuration
        self.server_name = _env("SERVER_NAME") or "jobpipeline-mcp-server"
        self.user_id = _env("USER_ID") or "local"

        # Cache configuration
        self.cache_ttl_seconds = self._parse_number("CACHE_TTL_SECONDS", 3600.0)
        self.analytics_ttl_seconds = self._parse_number("ANALYTICS_TTL_SECONDS", 300.0)
        self.profile_ttl_seconds = self._parse_number("PROFILE_TTL_SECONDS", 3600.0)
        self.cache_max_keys = int(self._parse_number("CACHE_MAX_KEYS", 10000))

        # Mutation configuration
        self.remote_timeout_seconds = self._parse_number("REMOTE_TIMEOUT_SECONDS", 30.0)
        self.max_batch_size = int(self._parse_number("MAX_BATCH_SIZE", 100))

    def _resolve_path(self, value: Optional[str], default: Optional[str]) -> Optional[Path]:
        raw = value or default
        if raw is None:
            return None
        path = Path(raw)
        if path.is_absolute():
            return path
        return self._project_root / path

    def _parse_number(self, name: str, default: float) -> float:
        """Parse a positive number, falling back to the default with a warning."""
        raw = _env(name)
        if raw is None or not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError:
            self._warnings.append(f"{ENV_PREFIX}{name}={raw!r} is not a number; using {default:g}")
            return default
        if value <= 0:
            self._warnings.append(f"{ENV_PREFIX}{name}={raw!r} must be positive; using {default:g}")
            return default
        return value

    @property
    def cache_ttl_ms(self) -> float:
        return self.cache_ttl_seconds * 1000

    @property
    def analytics_ttl_ms(self) -> float:
        return self.analytics_ttl_seconds * 1000

    @property
    def profile_ttl_ms(self) -> float:
        return self.profile_ttl_seconds * 1000

    def setup_logging(self):
        """
        Configure logging based on configuration settings.

        Sets up logging to stderr and optionally to a file.
        Log level is controlled by JOBPIPELINE_LOG_LEVEL.
        """
        numeric_level = getattr(logging, self.log_level, logging.INFO)

        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

        root_logger = logging.getLogger()
        root_logger.setLevel(numeric_level)

        # Remove existing handlers to avoid duplicates
        root_logger.handlers.clear()

        stderr_handler = logging.StreamHandler()
        stderr_handler.setLevel(numeric_level)
        stderr_handler.setFormatter(formatter)
        root_logger.addHandler(stderr_handler)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(self.log_file)
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

            logging.info(f"Logging to file: {self.log_file}")

        logging.info(f"Log level set to: {self.log_level}")
        logging.info(f"Database path: {self.db_path}")

    def get_db_path_str(self) -> str:
        return str(self.db_path)

    def validate(self) -> list[str]:
        """
        Validate configuration and return any warnings.

        Returns:
            List of warning messages (empty if all valid)
        """
        warnings = list(self._warnings)

        if not self.db_path.exists():
            warnings.append(
                f"Database file not found: {self.db_path}. "
                "The server will create an empty jobs table on first use."
            )

        if self.log_file:
            log_dir = self.log_file.parent
            if not log_dir.exists():
                try:
                    log_dir.mkdir(parents=True, exist_ok=True)
                except OSError as e:
                    warnings.append(f"Cannot create log directory {log_dir}: {e}")
            elif not os.access(log_dir, os.W_OK):
                warnings.append(f"Log directory not writable: {log_dir}")

        if self.max_batch_size > 1000:
            warnings.append(
                f"{ENV_PREFIX}MAX_BATCH_SIZE={self.max_batch_size} is unusually large"
            )

        return warnings


# Global configuration instance
config = Config()


def get_config() -> Config:
    """
    Get the global configuration instance.

    Returns:
        Global Config instance
    """
    return config
