#!/usr/bin/env python3
"""
FastGA Pipeline Utilities Module
"""
from .file import (
    ensure_dir, make_work_dir, remove_dir, link_or_copy,
    sequence_suffix, atomic_write, check_input_file
)
from .binaries import find_binary, find_all_binaries
from .fasta import catalog_from_fasta, read_names_and_lengths

__all__ = [
    # File utilities
    'ensure_dir', 'make_work_dir', 'remove_dir', 'link_or_copy',
    'sequence_suffix', 'atomic_write', 'check_input_file',

    # External binaries
    'find_binary', 'find_all_binaries',

    # FASTA
    'catalog_from_fasta', 'read_names_and_lengths',
]
