#!/usr/bin/env python3
"""
Data models for the FastGA pipeline
"""
from .alignment import (
    AlignmentRecord, AlignmentStats, QueryAlignmentSet, Strand,
    DEFAULT_IDENTITY, FLAG_DISCARD, FLAG_OVERLAP
)
from .catalog import (
    SequenceCatalog, SequenceEntry, get_sequence_name, get_all_sequence_names
)
from .summary import AlignmentSummary, records_to_frame

__all__ = [
    'AlignmentRecord', 'AlignmentStats', 'QueryAlignmentSet', 'Strand',
    'DEFAULT_IDENTITY', 'FLAG_DISCARD', 'FLAG_OVERLAP',
    'SequenceCatalog', 'SequenceEntry', 'get_sequence_name', 'get_all_sequence_names',
    'AlignmentSummary', 'records_to_frame',
]
