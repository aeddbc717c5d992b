#!/usr/bin/env python3
"""
Configuration management for the feed ingestor.

This module centralizes logging setup and configuration loading. Values come
from environment variables, an optional .env file next to this module, and an
optional YAML secrets file (SECRETS_FILE) whose entries override both.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    Output goes to stdout with line buffering so progress lines appear as soon
    as each feed completes. Modules should call get_logger() for a child logger.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    # Captured streams under test runners may not support reconfigure()
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            stream.reconfigure(line_buffering=True)

    # readability logs every candidate node at INFO
    getLogger("readability").setLevel(WARNING)

    return getLogger("FeedIngest")


def get_logger(name: str):
    """Get a module-specific logger named "FeedIngest.{name}".

    Example:
        logger = get_logger("pipeline")
        logger.info("Shows up as 'FeedIngest.pipeline - INFO - ...'")
    """
    return getLogger(f"FeedIngest.{name}")


logger = _setup_global_logger()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/133.0.0.0 Safari/537.36"
)

TIER_NAMES = ("low", "high", "max")


class Config:
    """Configuration manager for the feed ingestor.

    Loading order:
    1. Environment variables
    2. .env file (if present)
    3. YAML secrets file (if SECRETS_FILE is set)

    Example secrets.yaml format:
    ```yaml
    DATABASE_PATH: "/var/lib/feed-ingest/articles.db"
    USER_AGENT: "MyCrawler/1.0"
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and secrets file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_secrets_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.01) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        base_dir = path.dirname(path.abspath(__file__))

        # Inputs and storage
        self.DATABASE_PATH = environ.get("DATABASE_PATH", path.join(base_dir, "articles.db"))
        self.FEEDS_FILE = environ.get("FEEDS_FILE", path.join(base_dir, "feeds.txt"))
        self.FEED_SKIP_FIRST = self._validate_positive_int("FEED_SKIP_FIRST", 0, 0)

        # HTTP request configuration
        self.USER_AGENT = environ.get("USER_AGENT", DEFAULT_USER_AGENT)
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Concurrency tiers, selectable at runtime from the control channel
        self.TIER_LIMITS: Dict[str, int] = {
            "low": self._validate_positive_int("TIER_LOW", 3, 1),
            "high": self._validate_positive_int("TIER_HIGH", 10, 1),
            "max": self._validate_positive_int("TIER_MAX", 25, 1),
        }
        initial_tier = environ.get("INITIAL_TIER", "low").strip().lower()
        if initial_tier not in TIER_NAMES:
            logger.warning(f"INITIAL_TIER must be one of {', '.join(TIER_NAMES)}, using default low")
            initial_tier = "low"
        self.INITIAL_TIER = initial_tier

        # Background task cadence
        self.CONTROL_POLL_INTERVAL = self._validate_positive_float("CONTROL_POLL_INTERVAL", 0.1)
        self.RESOURCE_SAMPLE_INTERVAL = self._validate_positive_float("RESOURCE_SAMPLE_INTERVAL", 1.0, 0.1)

        # Extraction
        self.MIN_READABLE_CHARS = self._validate_positive_int("MIN_READABLE_CHARS", 140, 1)

        # Dedup model: claim URLs before admission (true) or rely on insert-ignore (false)
        self.STRICT_URL_RESERVATION = environ.get("STRICT_URL_RESERVATION", "true").lower() == "true"

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with size and permission checks.

        Returns:
            Parsed YAML or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_secrets_file(self):
        """Load environment variable overrides from a YAML secrets file.

        Accepts a top-level mapping, or the same mapping nested under an
        `environment` key.
        """
        secrets_file_path = environ.get("SECRETS_FILE")
        if not secrets_file_path:
            logger.debug("SECRETS_FILE not set; relying on environment/.env")
            return

        secrets_config = self._safe_read_yaml(secrets_file_path, 2 * 1024 * 1024, 'secrets')
        if secrets_config is None:
            return
        if not isinstance(secrets_config, dict):
            logger.warning(f"Secrets file {secrets_file_path} must be a YAML mapping at the top level")
            return

        env_vars = secrets_config.get('environment')
        if not isinstance(env_vars, dict):
            env_vars = secrets_config

        secrets_loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                secrets_loaded += 1
            else:
                logger.warning(f"Skipping invalid environment variable in secrets file: {key}={value}")

        logger.info(f"Loaded {secrets_loaded} environment variables from secrets file {secrets_file_path}")

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "database_path": self.DATABASE_PATH,
            "feeds_file": self.FEEDS_FILE,
            "feed_skip_first": self.FEED_SKIP_FIRST,
            "http_timeout": self.HTTP_TIMEOUT,
            "tier_limits": dict(self.TIER_LIMITS),
            "initial_tier": self.INITIAL_TIER,
            "min_readable_chars": self.MIN_READABLE_CHARS,
            "strict_url_reservation": self.STRICT_URL_RESERVATION,
            "secrets_file_configured": bool(environ.get("SECRETS_FILE")),
        }


# Global configuration instance
config = Config()
