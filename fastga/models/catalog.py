#!/usr/bin/env python3
"""
Sequence catalogs: integer id <-> name/length for one sequence database
"""
import logging
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, NamedTuple, Optional, Tuple, Union

from fastga.exceptions import ValidationError

logger = logging.getLogger("fastga.models.catalog")


class SequenceEntry(NamedTuple):
    id: int
    name: str
    length: int


class SequenceCatalog:
    """Immutable bidirectional mapping for one sequence database

    Built once and shared read-only by every consumer of records that
    reference the database.
    """

    __slots__ = ('_entries', '_by_name', 'source_path')

    def __init__(self, entries: Iterable[Union[SequenceEntry, Tuple[int, str, int]]],
                 source_path: Optional[str] = None):
        by_id: Dict[int, SequenceEntry] = {}
        by_name: Dict[str, int] = {}
        for entry in entries:
            entry = SequenceEntry(*entry)
            if entry.id in by_id:
                raise ValidationError(f"Duplicate sequence id {entry.id} in catalog",
                                      {'source': source_path})
            if entry.length < 0:
                raise ValidationError(f"Negative length for sequence {entry.name}",
                                      {'source': source_path})
            by_id[entry.id] = entry
            if entry.name in by_name:
                logger.warning(f"Duplicate sequence name {entry.name!r}; "
                               f"name lookups resolve to id {by_name[entry.name]}")
            else:
                by_name[entry.name] = entry.id

        self._entries = MappingProxyType(by_id)
        self._by_name = MappingProxyType(by_name)
        self.source_path = str(source_path) if source_path is not None else None

    @classmethod
    def from_names(cls, names_and_lengths: Iterable[Tuple[str, int]],
                   source_path: Optional[str] = None) -> 'SequenceCatalog':
        """Assign ids 0..n-1 in the given order"""
        return cls((SequenceEntry(i, name, length)
                    for i, (name, length) in enumerate(names_and_lengths)),
                   source_path=source_path)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SequenceEntry]:
        return iter(sorted(self._entries.values()))

    def __contains__(self, seq_id: int) -> bool:
        return seq_id in self._entries

    def __eq__(self, other) -> bool:
        if not isinstance(other, SequenceCatalog):
            return NotImplemented
        return dict(self._entries) == dict(other._entries)

    def __repr__(self) -> str:
        return f"SequenceCatalog({len(self)} sequences, source={self.source_path!r})"

    def get(self, seq_id: int) -> Optional[SequenceEntry]:
        return self._entries.get(seq_id)

    def name(self, seq_id: int) -> Optional[str]:
        entry = self._entries.get(seq_id)
        return entry.name if entry else None

    def length(self, seq_id: int) -> Optional[int]:
        entry = self._entries.get(seq_id)
        return entry.length if entry else None

    def id_of(self, name: str) -> Optional[int]:
        return self._by_name.get(name)

    def names(self) -> Mapping[int, str]:
        return MappingProxyType({seq_id: entry.name for seq_id, entry in self._entries.items()})


def get_sequence_name(catalog: SequenceCatalog, seq_id: int) -> Optional[str]:
    """Display name for a sequence id, None when unknown"""
    return catalog.name(seq_id)


def get_all_sequence_names(catalog: SequenceCatalog) -> Mapping[int, str]:
    """Mapping of every sequence id in the catalog to its name"""
    return catalog.names()
