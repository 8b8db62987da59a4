"""
Configuration management for the retention system.

This module handles loading, validation, and management of retention configurations.
Values come from a YAML file and can be overridden by environment variables.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from .retention_errors import ConfigurationError
from .retention_models import DatabaseSettings, RetentionConfig
from .retention_policy import sanitize_identifier

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ('table', 'timestamp_column')

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    'RETENTION_TABLE': ('retention', 'table', str),
    'RETENTION_TIMESTAMP_COLUMN': ('retention', 'timestamp_column', str),
    'RETENTION_ID_COLUMN': ('retention', 'id_column', str),
    'RETENTION_MONTHS': ('retention', 'retention_months', int),
    'RETENTION_BATCH_SIZE': ('retention', 'batch_size', int),
    'RETENTION_BATCH_DELAY_MS': ('retention', 'batch_delay_ms', int),
    'RETENTION_MAX_RETRIES': ('retention', 'max_retries', int),
    'RETENTION_SCHEDULE': ('scheduler', 'schedule', str),
    'RETENTION_TIMEZONE': ('scheduler', 'timezone', str),
    'RETENTION_DB_PATH': ('database', 'path', str),
}

_HHMM = re.compile(r'^(\d{1,2}):(\d{2})$')
_TRUE_VALUES = ('true', 'yes', 'on', '1')
_FALSE_VALUES = ('false', 'no', 'off', '0')


def parse_daily_schedule(schedule: str) -> Tuple[int, int]:
    """
    Extract (hour, minute) from a daily schedule expression.

    Accepts ``HH:MM`` or a five-field cron expression whose minute and hour
    are plain numbers and whose remaining fields are ``*``.
    """
    text = (schedule or '').strip()

    match = _HHMM.match(text)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
    else:
        fields = text.split()
        if len(fields) != 5 or any(f != '*' for f in fields[2:]):
            raise ConfigurationError(f"Unsupported schedule expression: {schedule!r} "
                                     f"(expected 'HH:MM' or 'M H * * *')")
        try:
            minute, hour = int(fields[0]), int(fields[1])
        except ValueError:
            raise ConfigurationError(f"Unsupported schedule expression: {schedule!r}")

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError(f"Schedule time out of range: {schedule!r}")
    return hour, minute


class RetentionConfigManager:
    """Manages retention system configuration."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self.config = self._load_config()

    def _load_config(self) -> RetentionConfig:
        """Load configuration from YAML file and environment."""
        config_data = self._get_default_config()

        if self.config_path is not None:
            if self.config_path.exists():
                try:
                    with open(self.config_path, 'r') as f:
                        file_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
                if not isinstance(file_data, dict):
                    raise ConfigurationError(f"Expected a mapping in {self.config_path}")
                self._merge(config_data, file_data)
            else:
                logger.warning(f"Config file not found at {self.config_path}. Using defaults.")

        self._apply_env_overrides(config_data)
        return self._parse_config(config_data)

    @staticmethod
    def _merge(base: Dict[str, Any], overrides: Dict[str, Any]):
        for section, values in overrides.items():
            if isinstance(values, dict) and isinstance(base.get(section), dict):
                base[section].update(values)
            else:
                base[section] = values

    def _apply_env_overrides(self, config_data: Dict[str, Any]):
        for var, (section, key, _) in ENV_OVERRIDES.items():
            value = self.environ.get(var)
            if value not in (None, ''):
                config_data.setdefault(section, {})[key] = value

    def _parse_config(self, config_data: Dict[str, Any]) -> RetentionConfig:
        """Parse configuration data into RetentionConfig object."""
        retention = config_data.get('retention', {})
        scheduler = config_data.get('scheduler', {})
        database = config_data.get('database', {})

        return RetentionConfig(
            table=str(retention.get('table') or ''),
            timestamp_column=str(retention.get('timestamp_column') or ''),
            id_column=str(retention.get('id_column') or 'id'),
            retention_months=self._as_int('retention_months', retention.get('retention_months', 3)),
            batch_size=self._as_int('batch_size', retention.get('batch_size', 1000)),
            batch_delay_ms=self._as_int('batch_delay_ms', retention.get('batch_delay_ms', 5000)),
            max_retries=self._as_int('max_retries', retention.get('max_retries', 3)),
            retry_base_delay_ms=self._as_int('retry_base_delay_ms', retention.get('retry_base_delay_ms', 1000)),
            health_check_delay_seconds=self._as_float(
                'health_check_delay_seconds', retention.get('health_check_delay_seconds', 5)),
            schedule=str(scheduler.get('schedule', '0 10 * * *')),
            timezone=str(scheduler.get('timezone', 'America/Sao_Paulo')),
            scheduler_enabled=self._as_bool('enabled', scheduler.get('enabled', True)),
            database=DatabaseSettings(
                path=str(database.get('path', 'data/retention.db')),
                timeout_seconds=self._as_float('timeout_seconds', database.get('timeout_seconds', 30))
            )
        )

    @staticmethod
    def _as_int(name: str, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Setting {name!r} must be an integer, got {value!r}")

    @staticmethod
    def _as_float(name: str, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Setting {name!r} must be a number, got {value!r}")

    @staticmethod
    def _as_bool(name: str, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"Setting {name!r} must be a boolean, got {value!r}")

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            'retention': {
                'table': '',
                'timestamp_column': '',
                'id_column': 'id',
                'retention_months': 3,
                'batch_size': 1000,
                'batch_delay_ms': 5000,
                'max_retries': 3,
                'retry_base_delay_ms': 1000,
                'health_check_delay_seconds': 5
            },
            'scheduler': {
                'enabled': True,
                'schedule': '0 10 * * *',
                'timezone': 'America/Sao_Paulo'
            },
            'database': {
                'path': 'data/retention.db',
                'timeout_seconds': 30
            }
        }

    def missing_settings(self) -> List[str]:
        """Names of required settings that are absent or empty after sanitization."""
        return missing_settings(self.config)

    def validate(self) -> RetentionConfig:
        """Validate the loaded configuration and return it."""
        return validate_config(self.config)

    def to_dict(self) -> Dict[str, Any]:
        """Effective configuration as a nested dictionary."""
        return config_to_dict(self.config)


def missing_settings(config: RetentionConfig) -> List[str]:
    return [name for name in REQUIRED_SETTINGS
            if not sanitize_identifier(getattr(config, name))]


def validate_config(config: RetentionConfig) -> RetentionConfig:
    """
    Check every invariant of a retention configuration.

    Raises:
        ConfigurationError: listing every missing required setting, or the
            first invalid value found
    """
    missing = missing_settings(config)
    if missing:
        raise ConfigurationError.for_missing(missing)

    if not sanitize_identifier(config.id_column):
        raise ConfigurationError("Setting 'id_column' is empty after sanitization")
    if config.batch_size <= 0:
        raise ConfigurationError(f"batch_size must be > 0, got {config.batch_size}")
    if config.retention_months < 0:
        raise ConfigurationError(f"retention_months must be >= 0, got {config.retention_months}")
    if config.max_retries < 1:
        raise ConfigurationError(f"max_retries must be >= 1, got {config.max_retries}")
    if config.batch_delay_ms < 0 or config.retry_base_delay_ms < 0:
        raise ConfigurationError("Delays must not be negative")

    parse_daily_schedule(config.schedule)
    return config


def config_to_dict(config: RetentionConfig) -> Dict[str, Any]:
    return {
        'retention': {
            'table': config.table,
            'timestamp_column': config.timestamp_column,
            'id_column': config.id_column,
            'retention_months': config.retention_months,
            'batch_size': config.batch_size,
            'batch_delay_ms': config.batch_delay_ms,
            'max_retries': config.max_retries,
            'retry_base_delay_ms': config.retry_base_delay_ms,
            'health_check_delay_seconds': config.health_check_delay_seconds
        },
        'scheduler': {
            'enabled': config.scheduler_enabled,
            'schedule': config.schedule,
            'timezone': config.timezone
        },
        'database': {
            'path': config.database.path,
            'timeout_seconds': config.database.timeout_seconds
        }
    }


def load_config(config_path: Optional[str] = None) -> RetentionConfig:
    """Load configuration from ``config_path``, a .env file and the process environment."""

    # Load .env file if it exists
    load_dotenv()
    return RetentionConfigManager(config_path).config
