#!/usr/bin/env python3
"""
Alignment summaries and tabular views for reporting
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from fastga.models.alignment import AlignmentRecord, Strand
from fastga.models.catalog import SequenceCatalog


FRAME_COLUMNS = [
    'query_id', 'query_name', 'query_start', 'query_end', 'query_len',
    'target_id', 'target_name', 'target_start', 'target_end', 'target_len',
    'strand', 'diffs', 'identity', 'block_length', 'merge_count',
]


@dataclass
class AlignmentSummary:
    """Aggregate statistics over a collection of alignment records"""
    record_count: int = 0
    query_count: int = 0
    target_count: int = 0
    forward_count: int = 0
    reverse_count: int = 0
    total_block_length: int = 0
    mean_identity: float = 0.0
    weighted_identity: float = 0.0
    per_query: Dict[int, int] = field(default_factory=dict)

    @classmethod
    def from_records(cls, records: Iterable[AlignmentRecord]) -> 'AlignmentSummary':
        summary = cls()
        targets = set()
        identity_sum = 0.0
        weighted_sum = 0.0

        for record in records:
            summary.record_count += 1
            summary.per_query[record.query_id] = summary.per_query.get(record.query_id, 0) + 1
            targets.add(record.target_id)
            if record.strand is Strand.REVERSE:
                summary.reverse_count += 1
            else:
                summary.forward_count += 1
            block = record.block_length
            summary.total_block_length += block
            identity_sum += record.identity
            weighted_sum += record.identity * block

        summary.query_count = len(summary.per_query)
        summary.target_count = len(targets)
        if summary.record_count:
            summary.mean_identity = identity_sum / summary.record_count
        if summary.total_block_length:
            summary.weighted_identity = weighted_sum / summary.total_block_length
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_count': self.record_count,
            'query_count': self.query_count,
            'target_count': self.target_count,
            'forward_count': self.forward_count,
            'reverse_count': self.reverse_count,
            'total_block_length': self.total_block_length,
            'mean_identity': round(self.mean_identity, 4),
            'weighted_identity': round(self.weighted_identity, 4),
        }


def records_to_frame(records: Iterable[AlignmentRecord],
                     query_catalog: Optional[SequenceCatalog] = None,
                     target_catalog: Optional[SequenceCatalog] = None) -> pd.DataFrame:
    """One row per record, with sequence names resolved from the catalogs

    Args:
        records: Alignment records
        query_catalog: Catalog for query ids (names left empty when None)
        target_catalog: Catalog for target ids

    Returns:
        DataFrame with FRAME_COLUMNS
    """
    rows: List[Dict[str, Any]] = []
    for record in records:
        rows.append({
            'query_id': record.query_id,
            'query_name': query_catalog.name(record.query_id) if query_catalog else None,
            'query_start': record.query_start,
            'query_end': record.query_end,
            'query_len': record.query_len,
            'target_id': record.target_id,
            'target_name': target_catalog.name(record.target_id) if target_catalog else None,
            'target_start': record.target_start,
            'target_end': record.target_end,
            'target_len': record.target_len,
            'strand': record.strand.symbol,
            'diffs': record.diffs,
            'identity': record.identity,
            'block_length': record.block_length,
            'merge_count': record.merge_count,
        })
    return pd.DataFrame(rows, columns=FRAME_COLUMNS)
