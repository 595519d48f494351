#!/usr/bin/env python3
"""
Reader and writer for the .1aln binary alignment container

Layout:
    header   magic "1ALN", version (u16), finalized flag (u8), record count (u64)
    lines    type (1 byte) + payload length (u32) + payload

The first line is always the schema ('S'), followed by provenance ('!'),
the two database references ('<'), the sequence skeleton ('N') of both
databases and then the alignments ('A'), each optionally followed by its
stats ('Z') and CIGAR ('C') lines. Line types a reader does not know are
skipped.
"""
import os
import logging
from datetime import datetime
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Tuple

import numpy as np

from fastga import __version__
from fastga.core.schema_guard import SchemaGuard, DEFAULT_SCHEMA_GUARD
from fastga.exceptions import FileOperationError, FormatError
from fastga.io.schema import (
    EXPECTED_SCHEMA, SCHEMA_TEXT, Schema, compile_schema, parse_schema_text,
    LINE_SCHEMA, LINE_PROVENANCE, LINE_DB_REFERENCE, LINE_SEQUENCE,
    LINE_ALIGNMENT, LINE_STATS, LINE_CIGAR
)
from fastga.models.alignment import AlignmentRecord, AlignmentStats, Strand
from fastga.models.catalog import SequenceCatalog, SequenceEntry

logger = logging.getLogger("fastga.io.aln")

MAGIC = b"1ALN"
CONTAINER_VERSION = 1

HEADER_DTYPE = np.dtype([
    ('magic', 'S4'),
    ('version', '<u2'),
    ('finalized', 'u1'),
    ('record_count', '<u8'),
])
LINE_HEADER_DTYPE = np.dtype([('type', 'S1'), ('length', '<u4')])

QUERY_DB = 0
TARGET_DB = 1

DEFAULT_PROGRAM = "pyfastga"


def _pack_header(finalized: bool, record_count: int) -> bytes:
    header = np.zeros(1, dtype=HEADER_DTYPE)
    header['magic'] = MAGIC
    header['version'] = CONTAINER_VERSION
    header['finalized'] = 1 if finalized else 0
    header['record_count'] = record_count
    return header.tobytes()


class AlnWriter:
    """Append-only writer; the file is valid only after close()"""

    def __init__(self, path: str, query_catalog: SequenceCatalog,
                 target_catalog: SequenceCatalog, schema: Schema,
                 provenance: Optional[Dict[str, str]] = None):
        self.path = str(path)
        self.schema = schema
        self.record_count = 0
        self.closed = False
        self._align = schema.require(LINE_ALIGNMENT)
        self._stats = schema.require(LINE_STATS)
        self._cigar = schema.require(LINE_CIGAR)

        try:
            self._handle: BinaryIO = open(self.path, 'wb')
        except OSError as e:
            raise FileOperationError(f"Cannot create alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e

        try:
            self._handle.write(_pack_header(False, 0))
            self._write_line(LINE_SCHEMA, SCHEMA_TEXT.encode('utf-8'))
            self._write_values(LINE_PROVENANCE, self._provenance_values(provenance))
            for db, catalog in ((QUERY_DB, query_catalog), (TARGET_DB, target_catalog)):
                self._write_values(LINE_DB_REFERENCE, {'db': db, 'path': catalog.source_path or ""})
            for db, catalog in ((QUERY_DB, query_catalog), (TARGET_DB, target_catalog)):
                for entry in catalog:
                    self._write_values(LINE_SEQUENCE, {
                        'db': db, 'seq_id': entry.id, 'length': entry.length, 'name': entry.name
                    })
        except OSError as e:
            self._handle.close()
            raise FileOperationError(f"Error writing alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e

        logger.debug(f"Opened {self.path} for writing ({len(query_catalog)} query, "
                     f"{len(target_catalog)} target sequences)")

    @staticmethod
    def _provenance_values(provenance: Optional[Dict[str, str]]) -> Dict[str, str]:
        values = {
            'program': DEFAULT_PROGRAM,
            'version': __version__,
            'command': "",
            'date': datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        }
        values.update(provenance or {})
        return values

    def _write_line(self, line_type: str, payload: bytes) -> None:
        line_header = np.zeros(1, dtype=LINE_HEADER_DTYPE)
        line_header['type'] = line_type.encode('ascii')
        line_header['length'] = len(payload)
        self._handle.write(line_header.tobytes())
        self._handle.write(payload)

    def _write_values(self, line_type: str, values: Dict[str, Any]) -> None:
        self._write_line(line_type, self.schema.require(line_type).encode(values))

    def write_record(self, record: AlignmentRecord) -> None:
        """Append one record; cross-record invariants are not checked

        Raises:
            ValidationError: If a field value does not fit its binary field
            FileOperationError: If the writer is closed or the write fails
        """
        if self.closed:
            raise FileOperationError(f"Alignment file {self.path} is already closed", path=self.path)
        # Encode every line first so a rejected record writes nothing
        lines = [(LINE_ALIGNMENT, self._align.encode({
            'query_id': record.query_id,
            'query_start': record.query_start,
            'query_end': record.query_end,
            'target_id': record.target_id,
            'target_start': record.target_start,
            'target_end': record.target_end,
            'strand': ord(record.strand.symbol),
            'diffs': record.diffs,
            'query_len': record.query_len,
            'target_len': record.target_len,
        }))]
        if record.stats is not None:
            stats = record.stats
            lines.append((LINE_STATS, self._stats.encode({
                'identity': stats.identity,
                'block_len': stats.block_length,
                'merge_count': stats.merge_count,
                'complexity': stats.complexity,
                'flags': stats.flags,
            })))
        if record.cigar is not None:
            lines.append((LINE_CIGAR, self._cigar.encode({'cigar': record.cigar})))

        try:
            for line_type, payload in lines:
                self._write_line(line_type, payload)
        except OSError as e:
            raise FileOperationError(f"Error writing alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e
        self.record_count += 1

    def write_records(self, records) -> int:
        count = 0
        for record in records:
            self.write_record(record)
            count += 1
        return count

    def close(self) -> None:
        """Patch the header with the record count and mark the file finalized"""
        if self.closed:
            return
        try:
            self._handle.flush()
            self._handle.seek(0)
            self._handle.write(_pack_header(True, self.record_count))
            self._handle.flush()
            os.fsync(self._handle.fileno())
        except OSError as e:
            raise FileOperationError(f"Error finalizing alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e
        finally:
            self._handle.close()
            self.closed = True
        logger.info(f"Wrote {self.record_count} records to {self.path}")

    def abort(self) -> None:
        """Close without finalizing; readers will reject the file"""
        if not self.closed:
            self._handle.close()
            self.closed = True
            logger.warning(f"Alignment file {self.path} closed without finalizing")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
        else:
            self.abort()
        return False


class AlnReader:
    """Forward-only reader over a finalized container"""

    def __init__(self, path: str, expected_schema: Schema = EXPECTED_SCHEMA):
        self.path = str(path)
        self.closed = False
        self.records_read = 0
        self.skipped_lines = 0
        self.provenance: Dict[str, Any] = {}
        self.db_paths: Dict[int, str] = {}

        try:
            self._handle: BinaryIO = open(self.path, 'rb')
        except OSError as e:
            raise FileOperationError(f"Cannot open alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e

        try:
            self._read_header()
            self.schema = self._read_schema(expected_schema)
            self._align = self.schema.require(LINE_ALIGNMENT)
            self._stats = self.schema.require(LINE_STATS)
            self._cigar = self.schema.require(LINE_CIGAR)
            self._pending = self._read_preamble()
        except BaseException:
            self._handle.close()
            raise

    def _read_exact(self, size: int) -> bytes:
        try:
            data = self._handle.read(size)
        except OSError as e:
            raise FileOperationError(f"Error reading alignment file {self.path}: {str(e)}",
                                     path=self.path, cause=e) from e
        if len(data) != size:
            raise FormatError(f"Unexpected end of file in {self.path}",
                              details={'path': self.path})
        return data

    def _read_header(self) -> None:
        data = self._handle.read(HEADER_DTYPE.itemsize)
        if len(data) != HEADER_DTYPE.itemsize:
            raise FormatError(f"{self.path} is too short to be an alignment file",
                              details={'path': self.path})
        header = np.frombuffer(data, dtype=HEADER_DTYPE, count=1)[0]
        if bytes(header['magic']) != MAGIC:
            raise FormatError(f"{self.path} is not an alignment file (bad magic)",
                              details={'path': self.path})
        if int(header['version']) != CONTAINER_VERSION:
            raise FormatError(f"Unsupported container version {int(header['version'])}",
                              details={'path': self.path})
        if not header['finalized']:
            raise FormatError(f"{self.path} was not finalized (writer not closed)",
                              details={'path': self.path})
        self.record_count = int(header['record_count'])

    def _next_line(self) -> Optional[Tuple[str, bytes]]:
        head = self._handle.read(LINE_HEADER_DTYPE.itemsize)
        if not head:
            return None
        if len(head) != LINE_HEADER_DTYPE.itemsize:
            raise FormatError(f"Truncated line header in {self.path}", details={'path': self.path})
        line_header = np.frombuffer(head, dtype=LINE_HEADER_DTYPE, count=1)[0]
        line_type = bytes(line_header['type']).decode('ascii', errors='replace')
        payload = self._read_exact(int(line_header['length']))
        return line_type, payload

    def _decode(self, layout, payload: bytes) -> Dict[str, Any]:
        try:
            return layout.decode(payload)
        except FormatError as e:
            raise FormatError(f"{e.message} in record {self.records_read} of {self.path}",
                              details={'path': self.path, 'record': self.records_read}) from e

    def _read_schema(self, expected_schema: Schema) -> Schema:
        line = self._next_line()
        if line is None or line[0] != LINE_SCHEMA:
            raise FormatError(f"{self.path} does not start with a schema line",
                              details={'path': self.path})
        try:
            schema_text = line[1].decode('utf-8')
        except UnicodeDecodeError as e:
            raise FormatError(f"Schema line of {self.path} is not valid UTF-8",
                              details={'path': self.path}) from e
        embedded = parse_schema_text(schema_text)
        if not embedded.is_compatible_with(expected_schema):
            raise FormatError(f"Schema in {self.path} does not match the expected record layout",
                              details={'path': self.path, 'schema': embedded.name})
        return embedded

    def _read_preamble(self) -> Optional[Tuple[str, bytes]]:
        """Consume metadata lines up to the first alignment; return that line"""
        entries: Dict[int, List[SequenceEntry]] = {QUERY_DB: [], TARGET_DB: []}
        line = self._next_line()
        while line is not None and line[0] != LINE_ALIGNMENT:
            line_type, payload = line
            if line_type == LINE_PROVENANCE:
                self.provenance = self._decode(self.schema.require(LINE_PROVENANCE), payload)
            elif line_type == LINE_DB_REFERENCE:
                values = self._decode(self.schema.require(LINE_DB_REFERENCE), payload)
                self.db_paths[values['db']] = values['path']
            elif line_type == LINE_SEQUENCE:
                values = self._decode(self.schema.require(LINE_SEQUENCE), payload)
                entries.setdefault(values['db'], []).append(
                    SequenceEntry(values['seq_id'], values['name'], values['length']))
            else:
                self.skipped_lines += 1
                logger.debug(f"Skipping unknown line type {line_type!r} in {self.path}")
            line = self._next_line()

        self.query_catalog = SequenceCatalog(entries[QUERY_DB],
                                             source_path=self.db_paths.get(QUERY_DB) or None)
        self.target_catalog = SequenceCatalog(entries[TARGET_DB],
                                              source_path=self.db_paths.get(TARGET_DB) or None)
        return line

    def read_next(self) -> Optional[AlignmentRecord]:
        """Next record in file order, None at end of stream"""
        if self.closed:
            return None

        line = self._pending
        while line is not None and line[0] != LINE_ALIGNMENT:
            self.skipped_lines += 1
            line = self._next_line()
        if line is None:
            self._pending = None
            if self.records_read != self.record_count:
                logger.warning(f"{self.path}: header declares {self.record_count} records, "
                               f"found {self.records_read}")
            return None

        values = self._decode(self._align, line[1])
        stats = None
        cigar = None

        # Attach trailing auxiliary lines until the next alignment
        line = self._next_line()
        while line is not None and line[0] != LINE_ALIGNMENT:
            line_type, payload = line
            if line_type == LINE_STATS:
                z = self._decode(self._stats, payload)
                stats = AlignmentStats(identity=z['identity'], block_length=z['block_len'],
                                       merge_count=z['merge_count'], complexity=z['complexity'],
                                       flags=z['flags'])
            elif line_type == LINE_CIGAR:
                cigar = self._decode(self._cigar, payload)['cigar']
            else:
                self.skipped_lines += 1
            line = self._next_line()
        self._pending = line

        try:
            strand = Strand.from_symbol(chr(values['strand']))
        except ValueError as e:
            raise FormatError(f"Invalid strand in record {self.records_read} of {self.path}",
                              details={'path': self.path, 'record': self.records_read}) from e

        self.records_read += 1
        return AlignmentRecord(
            query_id=values['query_id'], query_start=values['query_start'],
            query_end=values['query_end'], target_id=values['target_id'],
            target_start=values['target_start'], target_end=values['target_end'],
            strand=strand, diffs=values['diffs'], query_len=values['query_len'],
            target_len=values['target_len'], stats=stats, cigar=cigar)

    def __iter__(self) -> Iterator[AlignmentRecord]:
        while True:
            record = self.read_next()
            if record is None:
                return
            yield record

    def close(self) -> None:
        if not self.closed:
            self._handle.close()
            self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def open_for_read(path: str) -> AlnReader:
    """Open a finalized container

    Raises:
        FormatError: If the file is not a finalized container with the expected schema
        FileOperationError: On file-system failure
    """
    return AlnReader(path)


def open_for_write(path: str, query_catalog: SequenceCatalog,
                   target_catalog: SequenceCatalog,
                   guard: Optional[SchemaGuard] = None,
                   provenance: Optional[Dict[str, str]] = None,
                   temp_dir: Optional[str] = None) -> AlnWriter:
    """Create a container and write its metadata

    Args:
        path: Output path
        query_catalog: Catalog of the query database
        target_catalog: Catalog of the target database
        guard: Schema guard serializing schema compilation
        provenance: Overrides for the provenance line (program, version, command, date)
        temp_dir: Directory for the schema descriptor

    Raises:
        FormatError: If schema construction fails
        FileOperationError: On file-system failure
    """
    schema = compile_schema(SCHEMA_TEXT, guard=guard or DEFAULT_SCHEMA_GUARD, temp_dir=temp_dir)
    return AlnWriter(path, query_catalog, target_catalog, schema, provenance=provenance)
