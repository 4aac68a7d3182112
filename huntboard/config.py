"""
Configuration management for the hunt leaderboard server.
Supports both JSON file configuration and environment variable overrides.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class HuntConfig:
    """Configuration management for the hunt leaderboard server."""

    DEFAULT_CONFIG = {
        "event_name": "NFC Hunt",
        "teams": {
            "default_max_members": 8,
        },
        "security": {
            "bcrypt_rounds": 12,
            "admin_username": "admin",
            "admin_password": "hello",
            "admin_session_hours": 1,
        },
        "leaderboard": {
            "cache_ttl": 30,  # seconds, 0 disables caching
        },
        "server": {
            "cors_origin": "*",
        },
        "database": {
            "seed_sample_data": False,
            "busy_timeout_ms": 5000,
        },
    }

    def __init__(
        self,
        config_path: str = "hunt_config.json",
    ) -> None:
        """Initialize configuration from file, environment variables, or defaults."""
        self.config_path = Path(config_path)
        self.config = self._load_config()
        self._apply_env_overrides()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file or create default.

        @return: Dictionary containing the loaded configuration
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded_config = json.load(f)

                config = copy.deepcopy(self.DEFAULT_CONFIG)
                self._deep_merge(config, loaded_config)
                return config

            except (json.JSONDecodeError, IOError) as e:
                logger.error("Error loading config from %s: %s", self.config_path, e)
                logger.warning("Using default configuration")
                return copy.deepcopy(self.DEFAULT_CONFIG)
        else:
            self._create_default_config()
            return copy.deepcopy(self.DEFAULT_CONFIG)

    def _deep_merge(
        self,
        base_dict: Dict[str, Any],
        update_dict: Dict[str, Any],
    ) -> None:
        """
        Recursively merge dictionaries.

        @param base_dict: Base dictionary to merge into
        @param update_dict: Dictionary with updates to merge
        """
        for key, value in update_dict.items():
            if (
                key in base_dict
                and isinstance(base_dict[key], dict)
                and isinstance(value, dict)
            ):
                self._deep_merge(base_dict[key], value)
            else:
                base_dict[key] = value

    def _apply_env_overrides(self) -> None:
        """
        Apply environment variable overrides to configuration.

        Environment variables map onto nested keys (e.g., BCRYPT_ROUNDS -> security.bcrypt_rounds)
        """
        env_mappings = {
            "EVENT_NAME": ("event_name",),
            "DEFAULT_MAX_MEMBERS": ("teams", "default_max_members"),
            # Security
            "BCRYPT_ROUNDS": ("security", "bcrypt_rounds"),
            "ADMIN_USERNAME": ("security", "admin_username"),
            "ADMIN_PASSWORD": ("security", "admin_password"),
            "ADMIN_SESSION_HOURS": ("security", "admin_session_hours"),
            # Leaderboard
            "LEADERBOARD_CACHE_TTL": ("leaderboard", "cache_ttl"),
            # Server
            "CORS_ORIGIN": ("server", "cors_origin"),
            # Database
            "SEED_SAMPLE_DATA": ("database", "seed_sample_data"),
            "BUSY_TIMEOUT_MS": ("database", "busy_timeout_ms"),
        }

        # Free-text settings are never converted, so "123456" stays a password
        string_settings = {"EVENT_NAME", "ADMIN_USERNAME", "ADMIN_PASSWORD", "CORS_ORIGIN"}

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                if env_var in string_settings:
                    converted_value = env_value
                else:
                    converted_value = self._convert_env_value(env_value)
                self._set_nested_config(config_path, converted_value)

    def _convert_env_value(self, value: str) -> Any:
        """
        Convert environment variable string to appropriate type.

        @param value: String value from environment variable
        @return: Converted value (bool, int, or string)
        """
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        return value

    def _set_nested_config(self, path: tuple, value: Any) -> None:
        """
        Set a nested configuration value using a path tuple.

        @param path: Tuple representing the nested path (e.g., ("security", "bcrypt_rounds"))
        @param value: Value to set
        """
        current = self.config
        for key in path[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[path[-1]] = value

    def _create_default_config(self) -> None:
        """
        Create a default configuration file.

        Writes the default configuration to the configured file path.
        """
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self.DEFAULT_CONFIG, f, indent=2)
            logger.info("Created default configuration file: %s", self.config_path)
        except IOError as e:
            logger.warning("Could not create config file %s: %s", self.config_path, e)

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Checks configuration values for validity and sets defaults for invalid values.
        """
        for key in ("admin_username", "admin_password"):
            value = self.config["security"][key]
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                self.config["security"][key] = str(value)
            elif not isinstance(value, str) or not value:
                logger.warning("Invalid %s, using default", key)
                self.config["security"][key] = self.DEFAULT_CONFIG["security"][key]

        max_members = self.config["teams"]["default_max_members"]
        if not isinstance(max_members, int) or max_members <= 0:
            logger.warning("Invalid default_max_members, using 8")
            self.config["teams"]["default_max_members"] = 8

        # bcrypt accepts a cost factor between 4 and 31
        rounds = self.config["security"]["bcrypt_rounds"]
        if not isinstance(rounds, int) or not 4 <= rounds <= 31:
            logger.warning("Invalid bcrypt_rounds, using 12")
            self.config["security"]["bcrypt_rounds"] = 12

        hours = self.config["security"]["admin_session_hours"]
        if not isinstance(hours, (int, float)) or hours <= 0:
            logger.warning("Invalid admin_session_hours, using 1")
            self.config["security"]["admin_session_hours"] = 1

        ttl = self.config["leaderboard"]["cache_ttl"]
        if not isinstance(ttl, (int, float)) or ttl < 0:
            logger.warning("Invalid leaderboard cache_ttl, using 30")
            self.config["leaderboard"]["cache_ttl"] = 30

        timeout = self.config["database"]["busy_timeout_ms"]
        if not isinstance(timeout, int) or timeout < 0:
            logger.warning("Invalid busy_timeout_ms, using 5000")
            self.config["database"]["busy_timeout_ms"] = 5000

    def get(
        self,
        *keys: str,
    ) -> Any:
        """
        Get nested configuration value.

        @param keys: Variable arguments representing nested keys to traverse
        @return: Configuration value at the specified path, None if not found
        """
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return None
        return value
