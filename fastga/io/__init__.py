#!/usr/bin/env python3
"""
Record codecs: the .1aln binary container and PAF text
"""
from .aln import AlnReader, AlnWriter, open_for_read, open_for_write
from .paf import (
    PafRecordReader, parse_paf_line, format_paf_line, read_paf, write_paf, write_tsv
)
from .schema import SCHEMA_TEXT, Schema, compile_schema, parse_schema_text

__all__ = [
    'AlnReader', 'AlnWriter', 'open_for_read', 'open_for_write',
    'PafRecordReader', 'parse_paf_line', 'format_paf_line', 'read_paf',
    'write_paf', 'write_tsv',
    'SCHEMA_TEXT', 'Schema', 'compile_schema', 'parse_schema_text',
]
