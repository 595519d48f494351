#!/usr/bin/env python3
"""
Plane-sweep filter engine

Reduces alignment records to a high-confidence subset in five stages:
chain merge, weak-mapping removal, top-N retention, overlap sparsification
and reciprocal-best selection. Every stage is a pure function of its input
records and settings.
"""
import bisect
import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fastga.exceptions import ValidationError
from fastga.filters.models import FilterConfig, FilterResult, FilterStats
from fastga.filters.scoring import get_score, rank_key
from fastga.models.alignment import (
    AlignmentRecord, AlignmentStats, QueryAlignmentSet, Strand
)

logger = logging.getLogger("fastga.filters.plane_sweep")

RankKey = Callable[[AlignmentRecord], Tuple]


def drop_invalid(records: Iterable[AlignmentRecord]) -> Tuple[List[AlignmentRecord], int]:
    """Split off structurally invalid records

    Returns:
        Tuple of (valid records, number dropped)
    """
    valid = []
    dropped = 0
    for record in records:
        try:
            record.validate()
        except ValidationError as e:
            dropped += 1
            logger.debug(f"Dropping invalid record: {e.message}")
            continue
        valid.append(record)
    if dropped:
        logger.warning(f"Dropped {dropped} structurally invalid records")
    return valid, dropped


def _gaps(current: AlignmentRecord, following: AlignmentRecord) -> Tuple[int, int]:
    query_gap = following.query_start - current.query_end
    if current.strand is Strand.FORWARD:
        target_gap = following.target_start - current.target_end
    else:
        # Target coordinates run backwards along the query
        target_gap = current.target_start - following.target_end
    return query_gap, target_gap


class _Chain:
    """Block-weighted totals over the constituents of a merged chain"""

    def __init__(self, record: AlignmentRecord):
        self.aligned = 0
        self.identity_mass = 0.0
        self.complexity_mass = 0.0
        self.best_identity = 0.0
        self.add(record)

    def add(self, record: AlignmentRecord) -> None:
        block = record.block_length
        self.aligned += block
        self.identity_mass += record.identity * block
        self.complexity_mass += _complexity(record) * block
        self.best_identity = max(self.best_identity, record.identity)

    @property
    def identity(self) -> float:
        if self.aligned > 0:
            return self.identity_mass / self.aligned
        return self.best_identity

    @property
    def complexity(self) -> float:
        if self.aligned > 0:
            return self.complexity_mass / self.aligned
        return 0.0


def _merge_pair(current: AlignmentRecord, following: AlignmentRecord,
                query_gap: int, target_gap: int, chain: _Chain) -> AlignmentRecord:
    """Join following onto current; chain must already include following"""
    stats = AlignmentStats(
        identity=chain.identity,
        block_length=current.block_length + following.block_length + max(query_gap, target_gap, 0),
        merge_count=current.merge_count + following.merge_count,
        complexity=chain.complexity,
        flags=current.flags | following.flags,
    )
    return AlignmentRecord(
        query_id=current.query_id,
        query_start=min(current.query_start, following.query_start),
        query_end=max(current.query_end, following.query_end),
        target_id=current.target_id,
        target_start=min(current.target_start, following.target_start),
        target_end=max(current.target_end, following.target_end),
        strand=current.strand,
        diffs=current.diffs + following.diffs,
        query_len=current.query_len,
        target_len=current.target_len,
        stats=stats,
        cigar=None,
    )


def _complexity(record: AlignmentRecord) -> float:
    return record.stats.complexity if record.stats is not None else 0.0


def chain_merge(records: List[AlignmentRecord],
                max_gap: int) -> Tuple[List[AlignmentRecord], int]:
    """Merge collinear fragments of the same query/target/strand

    Consecutive fragments (by query start) are merged when both the query
    gap and the target gap are within max_gap in absolute value. The merged
    block length is the sum of the constituent blocks plus the larger gap;
    identity is the mean of the constituents weighted by their own block
    lengths. CIGARs of merged records are dropped.

    Returns:
        Tuple of (records, number of fragments absorbed into others)
    """
    groups: Dict[Tuple[int, int, Strand], List[Tuple[int, AlignmentRecord]]] = defaultdict(list)
    for index, record in enumerate(records):
        groups[(record.query_id, record.target_id, record.strand)].append((index, record))

    merged: List[Tuple[int, AlignmentRecord]] = []
    absorbed = 0
    for members in groups.values():
        members.sort(key=lambda item: (item[1].query_start, item[1].target_start, item[0]))
        first_index, current = members[0]
        chain = _Chain(current)
        for index, following in members[1:]:
            query_gap, target_gap = _gaps(current, following)
            if abs(query_gap) <= max_gap and abs(target_gap) <= max_gap:
                chain.add(following)
                current = _merge_pair(current, following, query_gap, target_gap, chain)
                first_index = min(first_index, index)
                absorbed += 1
            else:
                merged.append((first_index, current))
                first_index, current = index, following
                chain = _Chain(current)
        merged.append((first_index, current))

    merged.sort(key=lambda item: item[0])
    return [record for _, record in merged], absorbed


def remove_weak(records: List[AlignmentRecord], min_length: int,
                min_identity: float) -> Tuple[List[AlignmentRecord], int, int]:
    """Drop records shorter than min_length or below min_identity

    Returns:
        Tuple of (kept, dropped for length, dropped for identity)
    """
    kept = []
    by_length = 0
    by_identity = 0
    for record in records:
        if record.block_length < min_length:
            by_length += 1
        elif record.identity < min_identity:
            by_identity += 1
        else:
            kept.append(record)
    return kept, by_length, by_identity


def top_n(records: List[AlignmentRecord], max_per_query: int, max_per_target: int,
          key: RankKey) -> Tuple[List[AlignmentRecord], int]:
    """Keep the best max_per_query records per query and max_per_target per query/target pair

    A limit of 0 means unlimited. The result is in rank order.

    Returns:
        Tuple of (kept, number dropped)
    """
    ranked = sorted(records, key=key)
    if not max_per_query and not max_per_target:
        return ranked, 0

    per_query: Dict[int, int] = defaultdict(int)
    per_pair: Dict[Tuple[int, int], int] = defaultdict(int)
    kept = []
    for record in ranked:
        pair = (record.query_id, record.target_id)
        if max_per_query and per_query[record.query_id] >= max_per_query:
            continue
        if max_per_target and per_pair[pair] >= max_per_target:
            continue
        per_query[record.query_id] += 1
        per_pair[pair] += 1
        kept.append(record)
    return kept, len(ranked) - len(kept)


def _interval(record: AlignmentRecord, axis: str) -> Tuple[int, int]:
    if axis == 'target':
        return record.target_start, record.target_end
    return record.query_start, record.query_end


def overlap_fraction(candidate: Tuple[int, int], other: Tuple[int, int]) -> float:
    """Overlap of two half-open intervals as a fraction of the candidate's length"""
    length = candidate[1] - candidate[0]
    if length <= 0:
        return 0.0
    overlap = min(candidate[1], other[1]) - max(candidate[0], other[0])
    return overlap / length if overlap > 0 else 0.0


def sparsify_overlaps(records: List[AlignmentRecord], max_overlap: float, key: RankKey,
                      axis: str = 'query') -> Tuple[List[AlignmentRecord], int]:
    """Suppress records overlapping a retained higher-ranked record by more than max_overlap

    Records of each sequence on the chosen axis are visited best first. The
    retained intervals are kept sorted by start; a candidate is compared only
    with retained intervals starting within the longest retained length
    before it, the only ones that can reach it. A suppressed record never
    suppresses others. Overlap of exactly max_overlap is retained.

    Returns:
        Tuple of (kept records in input order, number suppressed)
    """
    groups: Dict[int, List[int]] = defaultdict(list)
    for index, record in enumerate(records):
        groups[record.target_id if axis == 'target' else record.query_id].append(index)

    suppressed = set()
    for indices in groups.values():
        indices.sort(key=lambda i: key(records[i]))
        retained: List[Tuple[int, int]] = []
        longest = 0
        for index in indices:
            interval = _interval(records[index], axis)
            start, end = interval
            low = bisect.bisect_left(retained, (start - longest, start - longest))
            high = bisect.bisect_left(retained, (end, end))
            if any(overlap_fraction(interval, other) > max_overlap
                   for other in retained[low:high]):
                suppressed.add(index)
                continue
            bisect.insort(retained, interval)
            longest = max(longest, end - start)

    kept = [record for index, record in enumerate(records) if index not in suppressed]
    return kept, len(suppressed)


def reciprocal_best(records: List[AlignmentRecord],
                    key: RankKey) -> Tuple[List[AlignmentRecord], int]:
    """Keep records that are the best for both their query and their target

    Returns:
        Tuple of (kept records in input order, number dropped)
    """
    best_for_query: Dict[int, AlignmentRecord] = {}
    best_for_target: Dict[int, AlignmentRecord] = {}
    for record in records:
        current = best_for_query.get(record.query_id)
        if current is None or key(record) < key(current):
            best_for_query[record.query_id] = record
        current = best_for_target.get(record.target_id)
        if current is None or key(record) < key(current):
            best_for_target[record.target_id] = record

    kept = [record for record in records
            if best_for_query[record.query_id] is record
            and best_for_target[record.target_id] is record]
    return kept, len(records) - len(kept)


def _query_local(records: List[AlignmentRecord], config: FilterConfig, key: RankKey,
                 stats: FilterStats, sparsify: bool) -> List[AlignmentRecord]:
    """Stages 1-4 (4 only when sparsify is set)"""
    records, stats.invalid = drop_invalid(records)

    if config.merges:
        records, stats.merged = chain_merge(records, config.merge_distance)

    records, stats.filtered_by_length, stats.filtered_by_identity = remove_weak(
        records, config.min_length, config.min_identity)

    records, stats.filtered_by_limit = top_n(
        records, config.max_per_query, config.max_per_target, key)

    if sparsify and config.sparsifies:
        records, stats.filtered_by_overlap = sparsify_overlaps(
            records, config.max_overlap, key, config.overlap_axis)
    return records


def filter_records(records: Iterable[AlignmentRecord],
                   config: Optional[FilterConfig] = None) -> FilterResult:
    """Run every filter stage over a bulk record collection

    Args:
        records: Alignment records
        config: Filter settings (defaults keep everything valid)

    Returns:
        FilterResult with kept records in rank order and per-stage counts
    """
    config = config or FilterConfig()
    key = rank_key(get_score(config.score))
    records = list(records)

    stats = FilterStats(total=len(records))
    kept = _query_local(records, config, key, stats, sparsify=True)

    if config.reciprocal_best:
        kept, stats.filtered_by_reciprocity = reciprocal_best(kept, key)

    stats.kept = len(kept)
    logger.debug(f"Filtered {stats.total} records to {stats.kept}")
    return FilterResult(records=kept, stats=stats)


class QueryStreamFilter:
    """Filter query-complete sets as they stream in

    process_set() applies the query-local stages to one set and returns its
    survivors. finish() applies the cross-query stages (reciprocal best and
    target-axis sparsification) over everything collected.
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self.key = rank_key(get_score(self.config.score))
        self.stats = FilterStats()
        self.sets_processed = 0
        self._collected: List[AlignmentRecord] = []
        self._finished = False

    @property
    def _sparsify_locally(self) -> bool:
        return self.config.overlap_axis == 'query'

    def process_set(self, query_set: QueryAlignmentSet) -> List[AlignmentRecord]:
        """Apply the query-local stages to one query set

        Returns:
            Surviving records of this query in rank order
        """
        if self._finished:
            raise ValidationError("QueryStreamFilter.finish() was already called")

        set_stats = FilterStats(total=len(query_set.records))
        kept = _query_local(list(query_set.records), self.config, self.key, set_stats,
                            sparsify=self._sparsify_locally)
        self.stats.add(set_stats)
        self.sets_processed += 1
        self._collected.extend(kept)
        return kept

    def finish(self) -> FilterResult:
        """Apply the cross-query stages over every processed set"""
        if self._finished:
            raise ValidationError("QueryStreamFilter.finish() was already called")
        self._finished = True

        kept = self._collected
        if not self._sparsify_locally and self.config.sparsifies:
            kept, self.stats.filtered_by_overlap = sparsify_overlaps(
                kept, self.config.max_overlap, self.key, self.config.overlap_axis)
        if self.config.reciprocal_best:
            kept, self.stats.filtered_by_reciprocity = reciprocal_best(kept, self.key)

        self.stats.kept = len(kept)
        logger.info(f"Stream filter kept {self.stats.kept} of {self.stats.total} records "
                    f"from {self.sets_processed} queries")
        return FilterResult(records=kept, stats=self.stats)
