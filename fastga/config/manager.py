#!/usr/bin/env python3
"""
Configuration manager for the FastGA pipeline
Handles loading and accessing configuration from various sources.
"""
import os
import copy
import json
import logging
from typing import Dict, Any, Optional, List

import yaml

from .schema import ConfigSchema
from .defaults import DEFAULT_CONFIG


class ConfigManager:
    """Configuration manager for the FastGA pipeline"""

    ENV_PREFIX = "FASTGA_"

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to configuration file (optional)
        """
        self.logger = logging.getLogger("fastga.config")
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.errors: List[str] = []

        # Load configuration
        self._load_defaults()

        # Load from config file if provided
        if config_path and os.path.exists(config_path):
            self._load_from_file(config_path)

            # Try to load local config if it exists
            local_config_path = self._get_local_config_path(config_path)
            if os.path.exists(local_config_path):
                self._load_from_file(local_config_path)
                self.logger.info(f"Merged local configuration from {local_config_path}")
        elif config_path:
            self.logger.warning(f"Configuration file not found: {config_path}")

        # Override with environment variables
        self._load_from_env()

        # Validate configuration
        self._validate_config()

    def _get_local_config_path(self, config_path: str) -> str:
        """Get path to local configuration file based on main config path"""
        config_dir = os.path.dirname(config_path)
        config_name = os.path.basename(config_path)

        # Format: <filename>.local.<extension>
        name_parts = os.path.splitext(config_name)
        local_name = f"{name_parts[0]}.local{name_parts[1]}"
        return os.path.join(config_dir, local_name)

    def _load_defaults(self) -> None:
        """Load default configuration values"""
        self.config = copy.deepcopy(DEFAULT_CONFIG)
        self.logger.debug("Loaded default configuration")

    def _load_from_file(self, config_path: str) -> None:
        """Load configuration from YAML or JSON file

        Args:
            config_path: Path to configuration file
        """
        try:
            with open(config_path, 'r') as f:
                if config_path.endswith('.json'):
                    file_config = json.load(f)
                else:  # Assume YAML otherwise
                    file_config = yaml.safe_load(f) or {}

            # Merge with current config (nested update)
            self._deep_update(self.config, file_config)
            self.logger.info(f"Loaded configuration from {config_path}")

        except (OSError, ValueError, yaml.YAMLError) as e:
            error_msg = f"Error loading config file {config_path}: {str(e)}"
            self.errors.append(error_msg)
            self.logger.error(error_msg)

    def _load_from_env(self) -> None:
        """Override config with environment variables

        Environment variables should be prefixed with FASTGA_
        and use double underscore __ for nesting.
        Example: FASTGA_PIPELINE__THREADS for pipeline.threads
        """
        for key, value in os.environ.items():
            if key.startswith(self.ENV_PREFIX):
                config_key = key[len(self.ENV_PREFIX):].lower()

                # Handle nested keys
                if "__" in config_key:
                    parts = config_key.split("__")
                    self._set_nested_value(self.config, parts, value)
                else:
                    self.config[config_key] = self._convert_value(value)

        self.logger.debug("Applied environment variable overrides")

    def _set_nested_value(self, config: Dict[str, Any],
                          key_parts: List[str], value: str) -> None:
        """Set a nested value in the configuration dictionary"""
        current = config
        for part in key_parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[key_parts[-1]] = self._convert_value(value)

    def _convert_value(self, value: str) -> Any:
        """Convert string environment variable to appropriate type

        Args:
            value: String value to convert

        Returns:
            Converted value with appropriate type
        """
        if value.lower() in ('true', 'yes'):
            return True
        elif value.lower() in ('false', 'no'):
            return False
        elif value.lower() in ('none', 'null'):
            return None
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return value

    def _deep_update(self, target: Dict[str, Any], source: Dict[str, Any]) -> None:
        """Recursively update target dictionary with values from source"""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_update(target[key], value)
            else:
                target[key] = value

    def _validate_config(self) -> None:
        """Validate the configuration against the schema"""
        errors = ConfigSchema.validate(self.config)
        self.errors.extend(errors)

        if errors:
            for error in errors:
                self.logger.error(f"Configuration error: {error}")
            self.logger.warning("Using configuration with validation errors")
        else:
            self.logger.debug("Configuration validated successfully")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value using dot notation

        Args:
            key: Configuration key (can use dot notation for nested values)
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' in key:
            current = self.config
            for part in key.split('.'):
                if not isinstance(current, dict) or part not in current:
                    return default
                current = current[part]
            return current
        return self.config.get(key, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        """Get a copy of a whole configuration section"""
        return dict(self.config.get(section) or {})

    def get_tools_config(self) -> Dict[str, Any]:
        """Get external tool locations"""
        return self.get_section('tools')

    def is_valid(self) -> bool:
        return not self.errors
