#!/usr/bin/env python3
"""
FASTA helpers: sequence catalogs built from the pipeline's input files
"""
import gzip
import logging
from typing import List, Tuple

from Bio.SeqIO.FastaIO import SimpleFastaParser

from fastga.exceptions import FileOperationError, ValidationError
from fastga.models.catalog import SequenceCatalog

logger = logging.getLogger("fastga.utils.fasta")


def _open_text(path: str):
    if str(path).endswith('.gz'):
        return gzip.open(path, 'rt')
    return open(path, 'r')


def read_names_and_lengths(path: str) -> List[Tuple[str, int]]:
    """Name (first header token) and length of each record, in file order

    Args:
        path: FASTA file, optionally gzip-compressed

    Returns:
        List of (name, length) tuples

    Raises:
        FileOperationError: If the file cannot be read
        ValidationError: If the file holds no FASTA records
    """
    entries = []
    try:
        with _open_text(path) as handle:
            for title, sequence in SimpleFastaParser(handle):
                name = title.split(None, 1)[0] if title.strip() else ""
                entries.append((name, len(sequence)))
    except (OSError, EOFError) as e:
        raise FileOperationError(f"Error reading FASTA file {path}: {str(e)}",
                                 path=path, cause=e) from e

    if not entries:
        raise ValidationError(f"No FASTA records found in {path}", {'path': str(path)})
    return entries


def catalog_from_fasta(path: str) -> SequenceCatalog:
    """Build a SequenceCatalog with ids assigned in file order from 0"""
    entries = read_names_and_lengths(path)
    catalog = SequenceCatalog.from_names(entries, source_path=path)
    logger.debug(f"Catalog for {path}: {len(catalog)} sequences")
    return catalog
