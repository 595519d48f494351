#!/usr/bin/env python3
"""
Alignment record models for the FastGA pipeline
Defines the in-memory record flowing between the aligner, the codecs,
the streaming iterator and the filter engine.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, List

from fastga.exceptions import ValidationError

# Identity reported when neither tags, CIGAR nor match counts give one
DEFAULT_IDENTITY = 0.0

# AlignmentStats.flags bits
FLAG_DISCARD = 0x01
FLAG_OVERLAP = 0x02


class Strand(Enum):
    """Orientation of the target interval relative to the query"""
    FORWARD = "+"
    REVERSE = "-"

    @classmethod
    def from_symbol(cls, symbol: str) -> 'Strand':
        """Parse '+' or '-'; anything else is rejected"""
        try:
            return cls(symbol)
        except ValueError:
            raise ValueError(f"Invalid strand symbol: {symbol!r}")

    @classmethod
    def from_code(cls, code: int) -> 'Strand':
        if code == 0:
            return cls.FORWARD
        if code == 1:
            return cls.REVERSE
        raise ValueError(f"Invalid strand code: {code}")

    @property
    def code(self) -> int:
        return 0 if self is Strand.FORWARD else 1

    @property
    def symbol(self) -> str:
        return self.value


@dataclass(frozen=True)
class AlignmentStats:
    """Compact per-record statistics"""
    identity: float = DEFAULT_IDENTITY
    block_length: int = 0
    merge_count: int = 1
    complexity: float = 0.0
    flags: int = 0

    @property
    def discarded(self) -> bool:
        return bool(self.flags & FLAG_DISCARD)

    @property
    def overlapped(self) -> bool:
        return bool(self.flags & FLAG_OVERLAP)


@dataclass(frozen=True)
class AlignmentRecord:
    """One matched region between a query and a target sequence

    Coordinates are 0-based and half-open. Target coordinates are always
    given on the forward strand of the target; the orientation lives in
    `strand` and is never inferred from coordinate order.
    """
    query_id: int
    query_start: int
    query_end: int
    target_id: int
    target_start: int
    target_end: int
    strand: Strand = Strand.FORWARD
    diffs: int = 0
    query_len: int = 0
    target_len: int = 0
    stats: Optional[AlignmentStats] = None
    cigar: Optional[str] = None

    @property
    def query_span(self) -> int:
        return self.query_end - self.query_start

    @property
    def target_span(self) -> int:
        return self.target_end - self.target_start

    @property
    def block_length(self) -> int:
        """Alignment block length, from stats when present"""
        if self.stats is not None and self.stats.block_length > 0:
            return self.stats.block_length
        return max(self.query_span, self.target_span, 0)

    @property
    def identity(self) -> float:
        """Fractional identity, from stats when present"""
        if self.stats is not None:
            return self.stats.identity
        block = self.block_length
        if block <= 0:
            return DEFAULT_IDENTITY
        return min(1.0, max(0.0, 1.0 - self.diffs / block))

    @property
    def merge_count(self) -> int:
        return self.stats.merge_count if self.stats is not None else 1

    @property
    def flags(self) -> int:
        return self.stats.flags if self.stats is not None else 0

    def query_coverage(self) -> float:
        """Fraction of the query sequence covered by the alignment"""
        return self.query_span / self.query_len if self.query_len > 0 else 0.0

    def target_coverage(self) -> float:
        """Fraction of the target sequence covered by the alignment"""
        return self.target_span / self.target_len if self.target_len > 0 else 0.0

    def with_stats(self, **changes) -> 'AlignmentRecord':
        """Copy of this record with some stats fields replaced"""
        stats = self.stats or AlignmentStats(identity=self.identity, block_length=self.block_length)
        return replace(self, stats=replace(stats, **changes))

    def with_flags(self, flags: int) -> 'AlignmentRecord':
        return self.with_stats(flags=self.flags | flags)

    def validate(self) -> None:
        """Check the coordinate invariants

        Raises:
            ValidationError: If any coordinate is out of order or range
        """
        if not isinstance(self.strand, Strand):
            raise ValidationError(f"Strand must be a Strand, got {self.strand!r}",
                                  {'record': repr(self)})
        for side, start, end, length in (
                ('query', self.query_start, self.query_end, self.query_len),
                ('target', self.target_start, self.target_end, self.target_len)):
            if start < 0 or end < start:
                raise ValidationError(f"Invalid {side} interval [{start}, {end})",
                                      {'record': repr(self)})
            if end > length:
                raise ValidationError(f"{side} end {end} exceeds sequence length {length}",
                                      {'record': repr(self)})
        if self.diffs < 0:
            raise ValidationError(f"Negative difference count {self.diffs}",
                                  {'record': repr(self)})

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ValidationError:
            return False
        return True


@dataclass
class QueryAlignmentSet:
    """All alignments for one query sequence

    Once handed to a consumer no further records for the query will arrive.
    """
    query_id: int
    query_name: str
    query_length: int
    records: List[AlignmentRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    @property
    def alignment_count(self) -> int:
        return len(self.records)

    @property
    def has_alignments(self) -> bool:
        return bool(self.records)

    def best_by_identity(self) -> Optional[AlignmentRecord]:
        """Record with the highest identity, first one on ties"""
        best = None
        for record in self.records:
            if best is None or record.identity > best.identity:
                best = record
        return best

    def filter_by_identity(self, min_identity: float) -> List[AlignmentRecord]:
        return [r for r in self.records if r.identity >= min_identity]

    def target_ids(self) -> List[int]:
        """Distinct target ids hit by this query, sorted"""
        return sorted({r.target_id for r in self.records})

    def total_aligned_bases(self) -> int:
        """Sum of query spans (overlaps counted twice)"""
        return sum(r.query_span for r in self.records)
