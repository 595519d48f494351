#!/usr/bin/env python3
"""
Tests for configuration loading and the immutable config dataclasses
"""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml

from fastga.config import ConfigManager, ConfigSchema, DEFAULT_CONFIG
from fastga.exceptions import ConfigurationError, ValidationError
from fastga.filters.models import FilterConfig
from fastga.pipelines.models import OutputFormat, PipelineConfig


class TestConfigManager(unittest.TestCase):
    """Test layered configuration loading"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, "config.yml")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_yaml(self, path, data):
        with open(path, 'w') as f:
            yaml.safe_dump(data, f)

    def test_defaults_without_file(self):
        """Defaults are loaded and valid"""
        manager = ConfigManager()

        self.assertTrue(manager.is_valid())
        self.assertEqual(manager.get('pipeline.min_length'), 100)
        self.assertEqual(manager.get('filter.score'), 'identity_log_length')
        self.assertEqual(manager.get('streaming.buffer_depth'), 1)
        self.assertEqual(manager.get('no.such.key', 'fallback'), 'fallback')

    def test_yaml_file_is_deep_merged(self):
        """A YAML file overrides only the keys it names"""
        self._write_yaml(self.config_path, {'pipeline': {'threads': 4, 'min_length': 250}})

        manager = ConfigManager(self.config_path)

        self.assertEqual(manager.get('pipeline.threads'), 4)
        self.assertEqual(manager.get('pipeline.min_length'), 250)
        self.assertEqual(manager.get('pipeline.frequency'), DEFAULT_CONFIG['pipeline']['frequency'])

    def test_local_file_overrides_main_file(self):
        """<name>.local.<ext> is merged after the main file"""
        self._write_yaml(self.config_path, {'pipeline': {'threads': 4}})
        self._write_yaml(os.path.join(self.temp_dir, "config.local.yml"),
                         {'pipeline': {'threads': 8}})

        manager = ConfigManager(self.config_path)

        self.assertEqual(manager.get('pipeline.threads'), 8)

    def test_json_file(self):
        """JSON files are accepted by extension"""
        path = os.path.join(self.temp_dir, "config.json")
        with open(path, 'w') as f:
            json.dump({'filter': {'max_per_query': 5}}, f)

        manager = ConfigManager(path)

        self.assertEqual(manager.get('filter.max_per_query'), 5)

    def test_missing_file_keeps_defaults(self):
        manager = ConfigManager(os.path.join(self.temp_dir, "absent.yml"))

        self.assertTrue(manager.is_valid())
        self.assertEqual(manager.get('pipeline.min_length'), 100)

    def test_unreadable_yaml_is_recorded_not_raised(self):
        with open(self.config_path, 'w') as f:
            f.write("pipeline: [unclosed\n")

        manager = ConfigManager(self.config_path)

        self.assertFalse(manager.is_valid())
        self.assertTrue(any("Error loading config file" in e for e in manager.errors))

    def test_environment_overrides(self):
        """FASTGA_ variables override with __ as the nesting separator"""
        env = {
            'FASTGA_PIPELINE__THREADS': '6',
            'FASTGA_PIPELINE__KEEP_INTERMEDIATES': 'true',
            'FASTGA_FILTER__MAX_OVERLAP': '0.5',
            'FASTGA_PIPELINE__TIMEOUT': 'none',
        }
        with patch.dict(os.environ, env):
            manager = ConfigManager()

        self.assertEqual(manager.get('pipeline.threads'), 6)
        self.assertIs(manager.get('pipeline.keep_intermediates'), True)
        self.assertEqual(manager.get('filter.max_overlap'), 0.5)
        self.assertIsNone(manager.get('pipeline.timeout'))

    def test_invalid_types_are_reported(self):
        self._write_yaml(self.config_path, {'pipeline': {'threads': 'many', 'soft_masking': 1}})

        manager = ConfigManager(self.config_path)

        self.assertFalse(manager.is_valid())
        self.assertTrue(any('pipeline.threads' in e for e in manager.errors))
        self.assertTrue(any('pipeline.soft_masking' in e for e in manager.errors))

    def test_bool_is_not_an_int(self):
        errors = ConfigSchema.validate({'tools': DEFAULT_CONFIG['tools'],
                                        'filter': {'max_per_query': True}})
        self.assertEqual(len(errors), 1)
        self.assertIn('got bool', errors[0])

    def test_missing_tools_section(self):
        errors = ConfigSchema.validate({'pipeline': {}})
        self.assertIn("Missing required configuration section: tools", errors)

    def test_tools_config(self):
        manager = ConfigManager()
        tools = manager.get_tools_config()

        self.assertEqual(tools['fastga_path'], 'FastGA')
        tools['fastga_path'] = 'changed'
        self.assertEqual(manager.get('tools.fastga_path'), 'FastGA')


class TestPipelineConfig(unittest.TestCase):
    """Test PipelineConfig validation, presets and flag rendering"""

    def test_defaults(self):
        config = PipelineConfig()

        self.assertGreaterEqual(config.threads, 1)
        self.assertEqual(config.min_length, 100)
        self.assertIsNone(config.min_identity)
        self.assertTrue(config.soft_masking)
        self.assertIs(config.output_format, OutputFormat.PAFX)
        self.assertIsNone(config.timeout)

    def test_output_format_from_string(self):
        self.assertIs(PipelineConfig(output_format='psl').output_format, OutputFormat.PSL)
        self.assertIs(PipelineConfig(output_format='pafS').output_format, OutputFormat.PAF_LONG)
        with self.assertRaises(ConfigurationError):
            PipelineConfig(output_format='sam')

    def test_invalid_values(self):
        for changes in ({'threads': 0}, {'min_length': -1}, {'min_identity': 1.5},
                        {'min_identity': 0.0}, {'frequency': 0}, {'timeout': 0},
                        {'min_chain_coverage': 2.0}):
            with self.subTest(changes=changes):
                with self.assertRaises(ConfigurationError):
                    PipelineConfig(**changes)

    def test_configuration_error_is_validation_error(self):
        with self.assertRaises(ValidationError):
            PipelineConfig(threads=-2)

    def test_immutable(self):
        config = PipelineConfig(threads=2)
        with self.assertRaises(Exception):
            config.threads = 4
        changed = config.with_changes(threads=4)
        self.assertEqual(config.threads, 2)
        self.assertEqual(changed.threads, 4)

    def test_presets(self):
        self.assertEqual(PipelineConfig.high_sensitivity().min_length, 50)
        fast = PipelineConfig.fast()
        self.assertEqual((fast.min_length, fast.min_identity, fast.frequency), (200, 0.9, 20))
        self.assertEqual(PipelineConfig.repetitive_genomes().frequency, 50)
        self.assertEqual(PipelineConfig.fast(min_length=500).min_length, 500)

    def test_aligner_flags(self):
        config = PipelineConfig(threads=3, min_length=150, min_identity=0.8,
                                adaptive_seed_cutoff=12, min_chain_coverage=0.25,
                                chain_start_threshold=30, verbose=True,
                                symmetric_seeding=True, log_file="run.log")

        flags = config.aligner_flags()

        self.assertEqual(flags[:2], ['-pafx', '-T3'])
        for flag in ('-l150', '-i0.80', '-f12', '-c25', '-s30', '-v', '-M', '-S', '-L:run.log'):
            self.assertIn(flag, flags)
        self.assertNotIn('-k', flags)

    def test_aligner_flags_minimal(self):
        flags = PipelineConfig(threads=1, min_length=0, soft_masking=False,
                               output_format='psl').aligner_flags()
        self.assertEqual(flags, ['-psl', '-T1'])

    def test_from_config(self):
        with patch.dict(os.environ, {'FASTGA_PIPELINE__THREADS': '3',
                                     'FASTGA_PIPELINE__OUTPUT_FORMAT': 'pafm'}):
            manager = ConfigManager()

        config = PipelineConfig.from_config(manager)

        self.assertEqual(config.threads, 3)
        self.assertIs(config.output_format, OutputFormat.PAFM)
        self.assertIsNone(config.timeout)


class TestFilterConfig(unittest.TestCase):
    """Test FilterConfig validation"""

    def test_defaults_keep_everything(self):
        config = FilterConfig()
        self.assertFalse(config.merges)
        self.assertFalse(config.sparsifies)
        self.assertEqual(config.max_per_query, 0)

    def test_invalid_values(self):
        for changes in ({'merge_distance': -1}, {'max_per_query': -1}, {'max_overlap': 1.1},
                        {'min_identity': -0.1}, {'min_length': -5}, {'score': 'nope'},
                        {'overlap_axis': 'diagonal'}):
            with self.subTest(changes=changes):
                with self.assertRaises(ConfigurationError):
                    FilterConfig(**changes)

    def test_from_config(self):
        with patch.dict(os.environ, {'FASTGA_FILTER__MAX_PER_QUERY': '3',
                                     'FASTGA_FILTER__RECIPROCAL_BEST': 'yes'}):
            manager = ConfigManager()

        config = FilterConfig.from_config(manager)

        self.assertEqual(config.max_per_query, 3)
        self.assertTrue(config.reciprocal_best)


if __name__ == '__main__':
    unittest.main()
