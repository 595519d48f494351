#!/usr/bin/env python3
"""
Default configuration values for the FastGA pipeline
"""

DEFAULT_CONFIG = {
    'tools': {
        'fatogdb_path': 'FAtoGDB',
        'gixmake_path': 'GIXmake',
        'fastga_path': 'FastGA',
        'bin_dir': None,
    },
    'pipeline': {
        'threads': None,            # None = number of CPUs
        'min_length': 100,
        'min_identity': None,
        'soft_masking': True,
        'output_format': 'pafx',
        'frequency': 10,
        'timeout': None,            # seconds per stage, None = no limit
        'keep_intermediates': False,
        'temp_dir': None,
        'verbose': False,
        'symmetric_seeding': False,
    },
    'filter': {
        'merge_distance': None,
        'max_per_query': 0,
        'max_per_target': 0,
        'min_identity': 0.0,
        'min_length': 0,
        'max_overlap': 1.0,
        'reciprocal_best': False,
        'score': 'identity_log_length',
        'overlap_axis': 'query',
    },
    'streaming': {
        'buffer_depth': 1,
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
}
