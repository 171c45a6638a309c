"""
Configuration management for the perfumery ledger.

This module handles:
- Database path configuration
- Environment-specific configuration (development vs. production)
- Ledger policy settings (markup factor, negative stock on sales, timeouts)
"""

import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DEFAULT_MARKUP_FACTOR,
    DEFAULT_TRANSACTION_TIMEOUT_SECONDS,
    ENV_VAR_ALLOW_NEGATIVE_SALES,
    ENV_VAR_DB_TIMEOUT,
    ENV_VAR_ENVIRONMENT,
    ENV_VAR_MARKUP_FACTOR,
    TRUTHY_VALUES,
)

logger = logging.getLogger(__name__)


class Config:
    """
    Application configuration manager.

    Resolves the database location for the active environment and reads
    ledger policy settings from the process environment once, at creation.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION

        if environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME

        self._markup_factor = _read_decimal(ENV_VAR_MARKUP_FACTOR, DEFAULT_MARKUP_FACTOR)
        self._allow_negative_on_sale = _read_bool(ENV_VAR_ALLOW_NEGATIVE_SALES, False)
        self._transaction_timeout = _read_int(
            ENV_VAR_DB_TIMEOUT, DEFAULT_TRANSACTION_TIMEOUT_SECONDS
        )

    def _get_project_data_dir(self) -> Path:
        """Project-local data/ directory used during development."""
        project_root = Path(__file__).parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """Per-user application directory used in production."""
        return Path.home() / ".perfumery"

    def ensure_directories(self) -> None:
        """Create the database directory if it doesn't exist."""
        self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_path(self) -> Path:
        """Full path to the database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def markup_factor(self) -> Decimal:
        """Multiplier applied to cost per bottle to suggest a retail price."""
        return self._markup_factor

    @property
    def allow_negative_on_sale(self) -> bool:
        """Whether point-of-sale deductions may drive stock below zero."""
        return self._allow_negative_on_sale

    @property
    def transaction_timeout_seconds(self) -> int:
        """Busy timeout for a single ledger transaction."""
        return self._transaction_timeout

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def database_exists(self) -> bool:
        """Check if the database file exists."""
        return self._database_path.exists()

    def __repr__(self) -> str:
        return (
            f"Config(environment='{self.environment}', "
            f"database_path='{self._database_path}', markup_factor={self._markup_factor})"
        )


def _read_decimal(name: str, default: Decimal) -> Decimal:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default
    if not value.is_finite():
        logger.warning(f"Ignoring non-finite {name}={raw!r}; using {default}")
        return default
    if value <= 0:
        logger.warning(f"Ignoring non-positive {name}={raw!r}; using {default}")
        return default
    return value


def _read_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in TRUTHY_VALUES


def _read_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}; using {default}")
        return default


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    PERFUMERY_ENV or defaults to production. Ignored if the
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_VAR_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None
