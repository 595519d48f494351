#!/usr/bin/env python3
"""
Shared fixtures for the pyfastga test suite

The external FastGA executables are replaced by small POSIX shell scripts
written into a temporary bin directory, so the full process pipeline runs
without the real aligner installed.
"""
import stat
import textwrap
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from fastga.models.alignment import AlignmentRecord, AlignmentStats, Strand
from fastga.models.catalog import SequenceCatalog
from fastga.pipelines.models import PipelineConfig


QUERY_SEQUENCES = {
    'chr1': 1000,
    'chr2': 800,
    'chr3': 600,
}

TARGET_SEQUENCES = {
    'ctgA': 1200,
    'ctgB': 900,
}

# Well-formed PAF output of the fake aligner, query-major
DEFAULT_PAF_LINES = [
    "chr1\t1000\t0\t400\t+\tctgA\t1200\t100\t500\t390\t400\t60\tNM:i:10\tid:f:0.975",
    "chr1\t1000\t500\t900\t-\tctgB\t900\t0\t400\t360\t400\t60\tcg:Z:360=40X",
    "chr2\t800\t0\t300\t+\tctgA\t1200\t600\t900\t297\t300\t60\tdv:f:0.01",
    "chr3\t600\t100\t600\t+\tctgB\t900\t300\t800\t450\t500\t60",
]


def write_fasta(path: Path, sequences: Dict[str, int]) -> Path:
    """Write a FASTA file with one record per name, sequence of the given length"""
    with open(path, 'w') as handle:
        for name, length in sequences.items():
            handle.write(f">{name} test sequence\n")
            sequence = ("ACGT" * (length // 4 + 1))[:length]
            for i in range(0, length, 60):
                handle.write(sequence[i:i + 60] + "\n")
    return path


def write_script(directory: Path, name: str, body: str) -> Path:
    """Write an executable /bin/sh script"""
    path = directory / name
    path.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip())
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


FATOGDB_SCRIPT = """
    src="$1"
    base="${src%.gz}"
    base="${base%.*}"
    touch "$base.1gdb"
"""

GIXMAKE_SCRIPT = """
    for last; do :; done
    touch "${last%.1gdb}.gix"
"""


class FakeToolchain:
    """Fake FAtoGDB / GIXmake / FastGA scripts in one bin directory"""

    def __init__(self, root: Path):
        self.root = root
        self.bin_dir = root / "bin"
        self.bin_dir.mkdir()
        self.output_file = root / "aligner_output.paf"
        self.args_file = root / "aligner_args.txt"
        write_script(self.bin_dir, "FAtoGDB", FATOGDB_SCRIPT)
        write_script(self.bin_dir, "GIXmake", GIXMAKE_SCRIPT)
        self.set_output(DEFAULT_PAF_LINES)

    @property
    def tools_config(self) -> Dict[str, Optional[str]]:
        return {
            'fatogdb_path': 'FAtoGDB',
            'gixmake_path': 'GIXmake',
            'fastga_path': 'FastGA',
            'bin_dir': str(self.bin_dir),
        }

    def set_output(self, lines: List[str], then: str = "") -> None:
        """Make FastGA print the given lines, then run an optional shell snippet"""
        self.output_file.write_text("".join(line + "\n" for line in lines))
        write_script(self.bin_dir, "FastGA", f"""
            echo "$@" > "{self.args_file}"
            cat "{self.output_file}"
            {then}
        """)

    def replace(self, name: str, body: str) -> None:
        write_script(self.bin_dir, name, body)

    def aligner_args(self) -> List[str]:
        return self.args_file.read_text().split()


@pytest.fixture
def toolchain(tmp_path):
    """Fake aligner toolchain"""
    return FakeToolchain(tmp_path)


@pytest.fixture
def query_fasta(tmp_path):
    return write_fasta(tmp_path / "query.fa", QUERY_SEQUENCES)


@pytest.fixture
def target_fasta(tmp_path):
    return write_fasta(tmp_path / "target.fasta", TARGET_SEQUENCES)


@pytest.fixture
def work_parent(tmp_path):
    """Parent directory for per-invocation work directories"""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def pipeline_config(work_parent):
    return PipelineConfig(threads=2, temp_dir=str(work_parent))


@pytest.fixture
def query_catalog():
    return SequenceCatalog.from_names(QUERY_SEQUENCES.items(), source_path="query.fa")


@pytest.fixture
def target_catalog():
    return SequenceCatalog.from_names(TARGET_SEQUENCES.items(), source_path="target.fasta")


@pytest.fixture
def make_record():
    """Factory for valid AlignmentRecords with sensible defaults"""
    def _make(query_id=0, query_start=0, query_end=100, target_id=0,
              target_start=None, target_end=None, strand=Strand.FORWARD,
              identity=None, block_length=None, diffs=0,
              query_len=10000, target_len=10000, cigar=None, **stats_fields):
        if target_start is None:
            target_start = query_start
        if target_end is None:
            target_end = target_start + (query_end - query_start)
        stats = None
        if identity is not None:
            stats = AlignmentStats(
                identity=identity,
                block_length=block_length if block_length is not None else query_end - query_start,
                **stats_fields)
        return AlignmentRecord(
            query_id=query_id, query_start=query_start, query_end=query_end,
            target_id=target_id, target_start=target_start, target_end=target_end,
            strand=strand, diffs=diffs, query_len=query_len, target_len=target_len,
            stats=stats, cigar=cigar)
    return _make
