"""
Configuration Management for the SideQuest session client.

This module handles the client id, API environment, session storage location
and logging settings with support for configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from sqshared.exceptions import ConfigurationError, ErrorCode

logger = logging.getLogger(__name__)

TEST_API_BASE_URL = "https://api.sidetestvr.com"
PRODUCTION_API_BASE_URL = "https://api.sidequestvr.com"
DEFAULT_DATA_FILE = "sqappapi.json"


class ClientConfiguration:
    """
    Configuration manager for the SideQuest session client.

    Supports configuration from:
    1. Overrides, typically command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {
            key: value for key, value in (overrides or {}).items() if value is not None
        }

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path: ~/.sqsession/client.conf"""
        return str(self._get_default_data_dir() / 'client.conf')

    @staticmethod
    def _get_default_data_dir() -> Path:
        return Path.home() / '.sqsession'

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Booleans and numbers are written as JSON literals
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        # Identifiers and paths stay strings, "007" is a valid client id
        env_mappings = {
            'SQ_CLIENT_ID': ('api', 'client_id', False),
            'SQ_TEST_MODE': ('api', 'test_mode', True),
            'SQ_TIMEOUT': ('api', 'timeout', True),
            'SQ_DATA_DIR': ('storage', 'data_dir', False),
            'SQ_DATA_FILE': ('storage', 'data_file', False),
            'SQ_ENCRYPT_DATA': ('storage', 'encrypt', True),
            'SQ_LOG_LEVEL': ('logging', 'level', False),
            'SQ_AUDIT_FILE': ('logging', 'audit_file', False),
        }

        for env_var, (section, key, typed) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                if typed and value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                elif typed and value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'api': {
                'client_id': None,
                'test_mode': True,
                'timeout': 30.0,
            },
            'storage': {
                'data_dir': str(self._get_default_data_dir()),
                'data_file': DEFAULT_DATA_FILE,
                'encrypt': False,
            },
            'logging': {
                'level': 'INFO',
                'file': None,
                'audit_file': None,
            },
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def get_client_id(self) -> Optional[str]:
        """Get the OAuth client id issued for the app."""
        value = self._overrides.get('client_id', self.get_config('api.client_id'))
        return str(value) if value is not None else None

    def is_test_mode(self) -> bool:
        """Check whether the SideQuest test environment is used."""
        return _as_bool(self._overrides.get('test_mode', self.get_config('api.test_mode', True)))

    def get_api_base_url(self) -> str:
        """Get the base URL of the selected SideQuest environment."""
        return TEST_API_BASE_URL if self.is_test_mode() else PRODUCTION_API_BASE_URL

    def get_timeout(self) -> float:
        """Get per-request timeout in seconds."""
        return float(self._overrides.get('timeout', self.get_config('api.timeout', 30.0)))

    def get_data_dir(self) -> str:
        """Get the directory holding the session snapshot."""
        return str(self._overrides.get('data_dir', self.get_config('storage.data_dir')))

    def get_data_file(self) -> str:
        """Get the session snapshot file name."""
        value = self._overrides.get('data_file', self.get_config('storage.data_file', DEFAULT_DATA_FILE))
        return str(value) if value is not None else ''

    def get_data_path(self) -> Path:
        """Get the full path of the session snapshot."""
        return Path(self.get_data_dir()) / self.get_data_file()

    def is_encryption_enabled(self) -> bool:
        """Check whether the session snapshot is encrypted at rest."""
        return _as_bool(self._overrides.get('encrypt', self.get_config('storage.encrypt', False)))

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self._overrides.get('log_level', self.get_config('logging.level', 'INFO'))).upper()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self._overrides.get('log_file', self.get_config('logging.file'))

    def get_audit_file(self) -> Optional[str]:
        """Get the path of the JSON audit log, if audit events are written to a file."""
        return self._overrides.get('audit_file', self.get_config('logging.audit_file'))

    def validate(self) -> None:
        """
        Check that the configuration can be used to create a session.

        Raises:
            ConfigurationError: If the client id or data file name is blank,
                or the data directory does not exist
        """
        client_id = self.get_client_id()
        if not client_id or not client_id.strip():
            raise ConfigurationError(
                "Client id must be provided",
                error_code=ErrorCode.CONFIG_MISSING_REQUIRED_SETTING,
                config_key='api.client_id'
            )

        data_dir = self.get_data_dir()
        if not os.path.isdir(data_dir):
            raise ConfigurationError(
                f"Data directory does not exist: {data_dir}",
                error_code=ErrorCode.CONFIG_DATA_DIR_NOT_FOUND,
                config_key='storage.data_dir'
            )

        if not self.get_data_file().strip():
            raise ConfigurationError(
                "Data file name must be provided",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='storage.data_file'
            )

        try:
            timeout = self.get_timeout()
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                "Timeout must be a number of seconds",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='api.timeout',
                cause=e
            )
        if timeout <= 0:
            raise ConfigurationError(
                "Timeout must be positive",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='api.timeout'
            )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)
