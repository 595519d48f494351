#!/usr/bin/env python3
"""
Configuration schema definition for validation
"""
from typing import Dict, Any, List

_NUMBER = (int, float)
_OPTIONAL_INT = (int, type(None))
_OPTIONAL_NUMBER = (int, float, type(None))
_OPTIONAL_STR = (str, type(None))


class ConfigSchema:
    """Configuration schema for validation"""

    SCHEMA = {
        'tools': {
            'fatogdb_path': {'type': str, 'required': True},
            'gixmake_path': {'type': str, 'required': True},
            'fastga_path': {'type': str, 'required': True},
            'bin_dir': {'type': _OPTIONAL_STR, 'required': False},
        },
        'pipeline': {
            'threads': {'type': _OPTIONAL_INT, 'required': False},
            'min_length': {'type': int, 'required': False},
            'min_identity': {'type': _OPTIONAL_NUMBER, 'required': False},
            'soft_masking': {'type': bool, 'required': False},
            'output_format': {'type': str, 'required': False},
            'frequency': {'type': int, 'required': False},
            'timeout': {'type': _OPTIONAL_NUMBER, 'required': False},
            'keep_intermediates': {'type': bool, 'required': False},
            'temp_dir': {'type': _OPTIONAL_STR, 'required': False},
            'verbose': {'type': bool, 'required': False},
            'symmetric_seeding': {'type': bool, 'required': False},
        },
        'filter': {
            'merge_distance': {'type': _OPTIONAL_INT, 'required': False},
            'max_per_query': {'type': int, 'required': False},
            'max_per_target': {'type': int, 'required': False},
            'min_identity': {'type': _NUMBER, 'required': False},
            'min_length': {'type': int, 'required': False},
            'max_overlap': {'type': _NUMBER, 'required': False},
            'reciprocal_best': {'type': bool, 'required': False},
            'score': {'type': str, 'required': False},
            'overlap_axis': {'type': str, 'required': False},
        },
        'streaming': {
            'buffer_depth': {'type': int, 'required': False},
        },
        'logging': {
            'level': {'type': str, 'required': False},
            'format': {'type': str, 'required': False},
            'log_dir': {'type': str, 'required': False},
        },
    }

    @staticmethod
    def _type_name(expected) -> str:
        if isinstance(expected, tuple):
            return " or ".join(t.__name__ for t in expected)
        return expected.__name__

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> List[str]:
        """Validate configuration against schema

        Args:
            config: Configuration to validate

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        # Check required fields
        for section, fields in cls.SCHEMA.items():
            # Check if required section exists
            if any(props.get('required', False) for _, props in fields.items()):
                if section not in config:
                    errors.append(f"Missing required configuration section: {section}")
                    continue

            # Skip if section doesn't exist
            if section not in config:
                continue

            # Check required fields in section
            section_config = config[section]
            for field, props in fields.items():
                if props.get('required', False) and field not in section_config:
                    errors.append(f"Missing required configuration field: {section}.{field}")

        # Validate field types
        for section, fields in cls.SCHEMA.items():
            if section not in config:
                continue

            section_config = config[section]
            for field, props in fields.items():
                if field in section_config and 'type' in props:
                    expected_type = props['type']
                    value = section_config[field]
                    # bool is an int subclass; don't let True pass as a count
                    if isinstance(value, bool) and expected_type is not bool and \
                            not (isinstance(expected_type, tuple) and bool in expected_type):
                        errors.append(
                            f"Invalid type for {section}.{field}: expected {cls._type_name(expected_type)}, "
                            f"got bool"
                        )
                    elif not isinstance(value, expected_type):
                        errors.append(
                            f"Invalid type for {section}.{field}: expected {cls._type_name(expected_type)}, "
                            f"got {type(value).__name__}"
                        )

        return errors
