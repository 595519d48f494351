#!/usr/bin/env python3
"""
PAF (pairwise mapping format) parsing and writing

One alignment per line, tab-separated: query name, length, start, end,
strand, target name, length, start, end, residue matches, block length,
mapping quality, then optional TAG:TYPE:VALUE fields.
"""
import re
import logging
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from fastga.exceptions import FileOperationError, FormatError
from fastga.models.alignment import (
    AlignmentRecord, AlignmentStats, Strand, DEFAULT_IDENTITY
)
from fastga.models.catalog import SequenceCatalog
from fastga.models.summary import records_to_frame
from fastga.utils.file import atomic_write

logger = logging.getLogger("fastga.io.paf")

PAF_COLUMNS = 12
DEFAULT_MAPQ = 255
MAX_RETAINED_ERRORS = 10

CIGAR_RE = re.compile(r'(\d+)([MIDNSHP=X])')


class CigarStats:
    """Operation counts derived from a CIGAR string"""

    __slots__ = ('matches', 'mismatches', 'gap_opens', 'gap_length', 'aligned')

    def __init__(self, cigar: str):
        self.matches = 0
        self.mismatches = 0
        self.gap_opens = 0
        self.gap_length = 0
        self.aligned = 0

        consumed = 0
        for match in CIGAR_RE.finditer(cigar):
            length = int(match.group(1))
            op = match.group(2)
            consumed += len(match.group(0))
            if op == '=':
                self.matches += length
            elif op == 'X':
                self.mismatches += length
            elif op in 'ID':
                self.gap_opens += 1
                self.gap_length += length
            elif op == 'M':
                self.aligned += length
        if consumed != len(cigar):
            raise ValueError(f"Invalid CIGAR string {cigar!r}")

    @property
    def has_match_detail(self) -> bool:
        """True if the string uses =/X ops, so identity is computable"""
        return (self.matches + self.mismatches) > 0

    @property
    def identity(self) -> Optional[float]:
        total = self.matches + self.mismatches + self.gap_length
        if not self.has_match_detail or total == 0:
            return None
        return self.matches / total

    @property
    def differences(self) -> int:
        return self.mismatches + self.gap_length


def _parse_tags(fields: List[str]) -> dict:
    tags = {}
    for field in fields:
        parts = field.split(':', 2)
        if len(parts) != 3:
            continue
        tag, kind, value = parts
        try:
            if kind == 'i':
                tags[tag] = int(value)
            elif kind == 'f':
                tags[tag] = float(value)
            else:
                tags[tag] = value
        except ValueError:
            raise FormatError(f"Invalid value for tag {tag}: {value!r}")
    return tags


def _typed_tag(tags: dict, tag: str, kinds, line: str):
    value = tags.get(tag)
    if value is not None and not isinstance(value, kinds):
        raise FormatError(f"Tag {tag} has a value of the wrong type: {value!r}", line=line)
    return value


def _resolve(catalog: SequenceCatalog, name: str, side: str) -> int:
    seq_id = catalog.id_of(name)
    if seq_id is None:
        raise FormatError(f"Unknown {side} sequence {name!r}")
    return seq_id


def parse_paf_line(line: str, query_catalog: SequenceCatalog,
                   target_catalog: SequenceCatalog) -> AlignmentRecord:
    """Parse one PAF line into an AlignmentRecord

    Identity is taken from the id tag, then the dv tag (1 - dv), then
    CIGAR =/X/I/D counts, then matches / block length, else DEFAULT_IDENTITY.

    Args:
        line: PAF line, trailing newline allowed
        query_catalog: Catalog resolving query names to ids
        target_catalog: Catalog resolving target names to ids

    Returns:
        Parsed AlignmentRecord

    Raises:
        FormatError: If the line is structurally malformed
    """
    fields = line.rstrip('\r\n').split('\t')
    if len(fields) < PAF_COLUMNS:
        raise FormatError(f"Expected at least {PAF_COLUMNS} columns, found {len(fields)}", line=line)

    try:
        query_len, query_start, query_end = int(fields[1]), int(fields[2]), int(fields[3])
        target_len, target_start, target_end = int(fields[6]), int(fields[7]), int(fields[8])
        matches, block_length = int(fields[9]), int(fields[10])
    except ValueError:
        raise FormatError("Non-integer coordinate or count field", line=line)

    try:
        strand = Strand.from_symbol(fields[4])
    except ValueError as e:
        raise FormatError(str(e), line=line)

    query_id = _resolve(query_catalog, fields[0], 'query')
    target_id = _resolve(target_catalog, fields[5], 'target')

    try:
        tags = _parse_tags(fields[PAF_COLUMNS:])
    except FormatError as e:
        raise FormatError(e.message, line=line) from e
    cigar = _typed_tag(tags, 'cg', str, line)
    id_tag = _typed_tag(tags, 'id', (int, float), line)
    dv_tag = _typed_tag(tags, 'dv', (int, float), line)
    nm_tag = _typed_tag(tags, 'NM', int, line)
    cigar_stats = None
    if cigar is not None:
        try:
            cigar_stats = CigarStats(cigar)
        except ValueError as e:
            raise FormatError(str(e), line=line)

    if id_tag is not None:
        identity = id_tag
    elif dv_tag is not None:
        identity = 1.0 - dv_tag
    elif cigar_stats is not None and cigar_stats.identity is not None:
        identity = cigar_stats.identity
    elif block_length > 0:
        identity = matches / block_length
    else:
        identity = DEFAULT_IDENTITY
    identity = min(1.0, max(0.0, identity))

    if nm_tag is not None:
        diffs = nm_tag
    elif cigar_stats is not None and cigar_stats.has_match_detail:
        diffs = cigar_stats.differences
    else:
        diffs = max(block_length - matches, 0)

    return AlignmentRecord(
        query_id=query_id, query_start=query_start, query_end=query_end,
        target_id=target_id, target_start=target_start, target_end=target_end,
        strand=strand, diffs=diffs, query_len=query_len, target_len=target_len,
        stats=AlignmentStats(identity=identity, block_length=block_length),
        cigar=cigar)


class PafRecordReader:
    """Iterate records from a PAF line stream, skipping malformed lines

    Malformed lines are counted in `malformed_count` and logged at WARNING;
    the first few errors are kept in `errors`.
    """

    def __init__(self, handle: Iterable[Union[str, bytes]],
                 query_catalog: SequenceCatalog, target_catalog: SequenceCatalog,
                 max_errors: int = MAX_RETAINED_ERRORS):
        self.handle = handle
        self.query_catalog = query_catalog
        self.target_catalog = target_catalog
        self.max_errors = max_errors
        self.line_number = 0
        self.records_read = 0
        self.malformed_count = 0
        self.errors: List[FormatError] = []

    def __iter__(self) -> Iterator[AlignmentRecord]:
        for raw in self.handle:
            self.line_number += 1
            line = raw.decode('utf-8', errors='replace') if isinstance(raw, bytes) else raw
            if not line.strip() or line.startswith('#'):
                continue
            try:
                record = parse_paf_line(line, self.query_catalog, self.target_catalog)
            except FormatError as e:
                self._record_error(e, line)
                continue
            self.records_read += 1
            yield record

    def _record_error(self, error: FormatError, line: str) -> None:
        self.malformed_count += 1
        error.line_number = self.line_number
        error.details['line_number'] = self.line_number
        if len(self.errors) < self.max_errors:
            self.errors.append(error)
        logger.warning(f"Skipping malformed PAF line {self.line_number}: {error.message}")


def read_paf(path: str, query_catalog: SequenceCatalog,
             target_catalog: SequenceCatalog) -> Tuple[List[AlignmentRecord], int]:
    """Read a whole PAF file

    Returns:
        Tuple of (records, malformed line count)
    """
    try:
        with open(path, 'r') as handle:
            reader = PafRecordReader(handle, query_catalog, target_catalog)
            records = list(reader)
    except OSError as e:
        raise FileOperationError(f"Error reading PAF file {path}: {str(e)}", path=path, cause=e) from e
    return records, reader.malformed_count


def format_paf_line(record: AlignmentRecord, query_catalog: SequenceCatalog,
                    target_catalog: SequenceCatalog) -> str:
    """Render a record as a PAF line (no trailing newline)"""
    query_name = query_catalog.name(record.query_id)
    target_name = target_catalog.name(record.target_id)
    if query_name is None or target_name is None:
        raise FormatError(f"Record references unknown sequence ids "
                          f"{record.query_id}/{record.target_id}")

    block = record.block_length
    fields = [
        query_name, str(record.query_len), str(record.query_start), str(record.query_end),
        record.strand.symbol,
        target_name, str(record.target_len), str(record.target_start), str(record.target_end),
        str(max(block - record.diffs, 0)), str(block), str(DEFAULT_MAPQ),
        f"NM:i:{record.diffs}",
        f"id:f:{record.identity:.6g}",
    ]
    if record.cigar:
        fields.append(f"cg:Z:{record.cigar}")
    return "\t".join(fields)


def write_paf(records: Iterable[AlignmentRecord], path: str,
              query_catalog: SequenceCatalog, target_catalog: SequenceCatalog) -> int:
    """Write records as PAF

    Returns:
        Number of records written
    """
    count = 0
    with atomic_write(path, 'w') as handle:
        for record in records:
            handle.write(format_paf_line(record, query_catalog, target_catalog))
            handle.write("\n")
            count += 1
    logger.info(f"Wrote {count} PAF records to {path}")
    return count


def write_tsv(records: Iterable[AlignmentRecord], path: str,
              query_catalog: Optional[SequenceCatalog] = None,
              target_catalog: Optional[SequenceCatalog] = None) -> int:
    """Write records as a headed tab-separated table including identity"""
    frame = records_to_frame(records, query_catalog, target_catalog)
    with atomic_write(path, 'w') as handle:
        frame.to_csv(handle, sep='\t', index=False, float_format='%.4f')
    logger.info(f"Wrote {len(frame)} rows to {path}")
    return len(frame)
