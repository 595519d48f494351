#!/usr/bin/env python3
"""
Schema descriptor for the .1aln binary alignment container

The schema is a short text document declaring every line type the container
may hold and the named, typed fields of each. Compiling it goes through a
descriptor file at a path keyed only by process id, so two compilations in
one process race on the same file. All compilations therefore run under a
SchemaGuard.
"""
import os
import logging
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from fastga.core.schema_guard import SchemaGuard, DEFAULT_SCHEMA_GUARD
from fastga.exceptions import FormatError, ValidationError

logger = logging.getLogger("fastga.io.schema")

FORMAT_NAME = "aln"
FORMAT_VERSION = 1

# Field type name -> numpy dtype; STRING is variable length
FIELD_TYPES = {
    'INT': '<i8',
    'INT4': '<i4',
    'REAL': '<f8',
    'CHAR': 'i1',
    'BYTE': 'u1',
    'STRING': None,
}

# Line type codes
LINE_SCHEMA = 'S'
LINE_PROVENANCE = '!'
LINE_DB_REFERENCE = '<'
LINE_SEQUENCE = 'N'
LINE_ALIGNMENT = 'A'
LINE_STATS = 'Z'
LINE_CIGAR = 'C'

SCHEMA_TEXT = f"""\
# compact alignment container
P {FORMAT_NAME} {FORMAT_VERSION}
L ! program:STRING version:STRING command:STRING date:STRING
L < db:INT4 path:STRING
L N db:INT4 seq_id:INT length:INT name:STRING
L A query_id:INT query_start:INT query_end:INT target_id:INT target_start:INT target_end:INT strand:CHAR diffs:INT query_len:INT target_len:INT
L Z identity:REAL block_len:INT merge_count:INT4 complexity:REAL flags:BYTE
L C cigar:STRING
"""

SCHEMA_FILE_PREFIX = ".aln_schema"


@dataclass(frozen=True)
class LineSchema:
    """Field layout of one line type"""
    line_type: str
    fields: Tuple[Tuple[str, str], ...]

    @property
    def fixed_fields(self) -> List[Tuple[str, str]]:
        return [(name, kind) for name, kind in self.fields if FIELD_TYPES[kind] is not None]

    @property
    def string_fields(self) -> List[str]:
        return [name for name, kind in self.fields if FIELD_TYPES[kind] is None]

    @property
    def dtype(self) -> np.dtype:
        """Packed numpy dtype for the fixed-size fields"""
        return np.dtype([(name, FIELD_TYPES[kind]) for name, kind in self.fixed_fields])

    def encode(self, values: Dict[str, Any]) -> bytes:
        """Pack a line payload: fixed fields, then length-prefixed strings

        Raises:
            ValidationError: If an integer value is out of range for its field
        """
        dtype = self.dtype
        parts = []
        if dtype.itemsize:
            row = np.zeros(1, dtype=dtype)
            for name, kind in self.fixed_fields:
                value = values[name]
                if dtype[name].kind in 'iu':
                    limits = np.iinfo(dtype[name])
                    if not limits.min <= value <= limits.max:
                        raise ValidationError(
                            f"Value {value} of field '{name}' does not fit {kind} "
                            f"in '{self.line_type}' line",
                            {'field': name, 'value': value})
                row[name] = value
            parts.append(row.tobytes())
        for name in self.string_fields:
            data = (values.get(name) or "").encode('utf-8')
            parts.append(len(data).to_bytes(4, 'little'))
            parts.append(data)
        return b"".join(parts)

    def decode(self, payload: bytes) -> Dict[str, Any]:
        """Unpack a payload written by encode()

        Raises:
            FormatError: If the payload is truncated or holds invalid UTF-8
        """
        dtype = self.dtype
        if len(payload) < dtype.itemsize:
            raise FormatError(f"Truncated '{self.line_type}' line: "
                              f"{len(payload)} bytes, need {dtype.itemsize}")
        values: Dict[str, Any] = {}
        if dtype.itemsize:
            row = np.frombuffer(payload, dtype=dtype, count=1)[0]
            for name, _ in self.fixed_fields:
                values[name] = row[name].item()

        offset = dtype.itemsize
        for name in self.string_fields:
            if offset + 4 > len(payload):
                raise FormatError(f"Truncated string field '{name}' in '{self.line_type}' line")
            size = int.from_bytes(payload[offset:offset + 4], 'little')
            offset += 4
            if offset + size > len(payload):
                raise FormatError(f"Truncated string field '{name}' in '{self.line_type}' line")
            try:
                values[name] = payload[offset:offset + size].decode('utf-8')
            except UnicodeDecodeError as e:
                raise FormatError(f"Invalid UTF-8 in string field '{name}' of '{self.line_type}' line") from e
            offset += size
        return values


@dataclass(frozen=True)
class Schema:
    """Compiled container schema"""
    name: str
    version: int
    lines: Tuple[LineSchema, ...]

    def line(self, line_type: str) -> Optional[LineSchema]:
        for line_schema in self.lines:
            if line_schema.line_type == line_type:
                return line_schema
        return None

    def require(self, line_type: str) -> LineSchema:
        line_schema = self.line(line_type)
        if line_schema is None:
            raise FormatError(f"Schema declares no '{line_type}' line type")
        return line_schema

    def is_compatible_with(self, expected: 'Schema') -> bool:
        """True if every line type of `expected` is declared here with identical fields"""
        if self.name != expected.name or self.version != expected.version:
            return False
        return all(self.line(line.line_type) == line for line in expected.lines)


def parse_schema_text(text: str) -> Schema:
    """Parse schema text into a Schema

    Raises:
        FormatError: On unknown directives, field types or duplicate line types
    """
    name = None
    version = None
    lines: List[LineSchema] = []
    seen = set()

    for line_number, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith('#'):
            continue
        tokens = line.split()
        directive = tokens[0]

        if directive == 'P':
            if len(tokens) != 3:
                raise FormatError("Malformed schema header", line_number=line_number, line=raw)
            name = tokens[1]
            try:
                version = int(tokens[2])
            except ValueError:
                raise FormatError(f"Invalid schema version {tokens[2]!r}",
                                  line_number=line_number, line=raw)
        elif directive == 'L':
            if len(tokens) < 3 or len(tokens[1]) != 1:
                raise FormatError("Malformed line declaration", line_number=line_number, line=raw)
            line_type = tokens[1]
            if line_type in seen:
                raise FormatError(f"Duplicate line type '{line_type}'",
                                  line_number=line_number, line=raw)
            fields = []
            for spec in tokens[2:]:
                field_name, _, kind = spec.partition(':')
                if not field_name or kind not in FIELD_TYPES:
                    raise FormatError(f"Invalid field declaration {spec!r}",
                                      line_number=line_number, line=raw)
                fields.append((field_name, kind))
            seen.add(line_type)
            lines.append(LineSchema(line_type, tuple(fields)))
        else:
            raise FormatError(f"Unknown schema directive {directive!r}",
                              line_number=line_number, line=raw)

    if name is None:
        raise FormatError("Schema has no 'P' header")
    return Schema(name=name, version=version, lines=tuple(lines))


def schema_descriptor_path(temp_dir: Optional[str] = None) -> str:
    """Descriptor path used during compilation; shared by every caller in the process"""
    return os.path.join(temp_dir or tempfile.gettempdir(), f"{SCHEMA_FILE_PREFIX}.{os.getpid()}")


def _compile_via_descriptor(schema_text: str, temp_dir: Optional[str]) -> Schema:
    path = schema_descriptor_path(temp_dir)
    try:
        with open(path, 'w') as handle:
            handle.write(schema_text)
        with open(path, 'r') as handle:
            compiled_text = handle.read()
    except OSError as e:
        raise FormatError(f"Cannot write schema descriptor {path}: {str(e)}",
                          details={'path': path}) from e
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove schema descriptor {path}: {str(e)}")

    return parse_schema_text(compiled_text)


def compile_schema(schema_text: str = SCHEMA_TEXT,
                   guard: Optional[SchemaGuard] = None,
                   temp_dir: Optional[str] = None) -> Schema:
    """Compile schema text through the process-wide schema guard

    Args:
        schema_text: Schema document
        guard: Guard serializing compilations (process default when None)
        temp_dir: Directory for the descriptor file

    Returns:
        Compiled Schema

    Raises:
        FormatError: If the schema cannot be written or parsed
    """
    guard = guard or DEFAULT_SCHEMA_GUARD
    return guard.with_exclusive_schema_access(
        lambda: _compile_via_descriptor(schema_text, temp_dir))


EXPECTED_SCHEMA = parse_schema_text(SCHEMA_TEXT)
