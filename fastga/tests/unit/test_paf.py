#!/usr/bin/env python3
"""
Tests for PAF parsing and writing
"""
import io

import pandas as pd
import pytest

from fastga.exceptions import FormatError
from fastga.io.paf import (
    CigarStats, PafRecordReader, format_paf_line, parse_paf_line, read_paf,
    write_paf, write_tsv
)
from fastga.models.alignment import DEFAULT_IDENTITY, Strand
from fastga.tests.conftest import DEFAULT_PAF_LINES


def paf(*fields):
    return "\t".join(str(f) for f in fields)


BASE = ["chr1", 1000, 0, 400, "+", "ctgA", 1200, 100, 500, 380, 400, 60]


class TestCigarStats:
    """Test CIGAR-derived statistics"""

    def test_extended_cigar(self):
        stats = CigarStats("50=2X3I45=1D")

        assert stats.matches == 95
        assert stats.mismatches == 2
        assert stats.gap_opens == 2
        assert stats.gap_length == 4
        assert stats.differences == 6
        assert stats.identity == pytest.approx(95 / 101)

    def test_plain_match_cigar_has_no_identity(self):
        stats = CigarStats("100M")
        assert stats.aligned == 100
        assert not stats.has_match_detail
        assert stats.identity is None

    def test_invalid_cigar(self):
        with pytest.raises(ValueError):
            CigarStats("10=Q5X")


class TestParsePafLine:
    """Test parse_paf_line"""

    def test_basic_fields(self, query_catalog, target_catalog):
        record = parse_paf_line(paf(*BASE) + "\n", query_catalog, target_catalog)

        assert (record.query_id, record.query_start, record.query_end) == (0, 0, 400)
        assert (record.target_id, record.target_start, record.target_end) == (0, 100, 500)
        assert record.strand is Strand.FORWARD
        assert (record.query_len, record.target_len) == (1000, 1200)
        assert record.block_length == 400
        assert record.identity == pytest.approx(0.95)
        assert record.diffs == 20
        assert record.cigar is None

    def test_reverse_strand(self, query_catalog, target_catalog):
        fields = list(BASE)
        fields[4] = "-"
        assert parse_paf_line(paf(*fields), query_catalog, target_catalog).strand is Strand.REVERSE

    def test_identity_precedence(self, query_catalog, target_catalog):
        line = paf(*BASE, "id:f:0.99", "dv:f:0.2", "cg:Z:300=100X")
        assert parse_paf_line(line, query_catalog, target_catalog).identity == pytest.approx(0.99)

        line = paf(*BASE, "dv:f:0.2", "cg:Z:300=100X")
        assert parse_paf_line(line, query_catalog, target_catalog).identity == pytest.approx(0.8)

        line = paf(*BASE, "cg:Z:300=100X")
        record = parse_paf_line(line, query_catalog, target_catalog)
        assert record.identity == pytest.approx(0.75)
        assert record.diffs == 100
        assert record.cigar == "300=100X"

    def test_nm_tag_sets_diffs(self, query_catalog, target_catalog):
        record = parse_paf_line(paf(*BASE, "NM:i:7", "cg:Z:300=100X"), query_catalog, target_catalog)
        assert record.diffs == 7

    def test_placeholder_identity(self, query_catalog, target_catalog):
        fields = list(BASE)
        fields[9], fields[10] = 0, 0
        record = parse_paf_line(paf(*fields), query_catalog, target_catalog)
        assert record.identity == DEFAULT_IDENTITY

    def test_unknown_tags_are_ignored(self, query_catalog, target_catalog):
        record = parse_paf_line(paf(*BASE, "tp:A:P", "zz:B:i,1,2", "junk"),
                                query_catalog, target_catalog)
        assert record.identity == pytest.approx(0.95)

    @pytest.mark.parametrize("line", [
        paf(*BASE[:11]),
        paf(*(BASE[:2] + ["zero"] + BASE[3:])),
        paf(*(BASE[:4] + ["*"] + BASE[5:])),
        paf(*(["chrUn"] + BASE[1:])),
        paf(*(BASE[:5] + ["ctgZ"] + BASE[6:])),
        paf(*BASE, "NM:i:many"),
        paf(*BASE, "cg:Z:12Q"),
        paf(*BASE, "id:Z:abc"),
        paf(*BASE, "dv:A:x"),
        paf(*BASE, "NM:Z:x"),
        paf(*BASE, "NM:f:1.5"),
        paf(*BASE, "cg:i:5"),
    ])
    def test_malformed_lines(self, line, query_catalog, target_catalog):
        with pytest.raises(FormatError):
            parse_paf_line(line, query_catalog, target_catalog)


class TestPafRecordReader:
    """Test streaming PAF reading with malformed-line recovery"""

    def test_skips_and_counts_malformed_lines(self, query_catalog, target_catalog, caplog):
        lines = [DEFAULT_PAF_LINES[0], "garbage line", "", "# comment",
                 DEFAULT_PAF_LINES[1], paf(*(["chrUn"] + BASE[1:])), DEFAULT_PAF_LINES[2]]
        handle = io.StringIO("\n".join(lines) + "\n")

        reader = PafRecordReader(handle, query_catalog, target_catalog)
        records = list(reader)

        assert len(records) == 3
        assert reader.records_read == 3
        assert reader.malformed_count == 2
        assert [e.line_number for e in reader.errors] == [2, 6]
        assert "Skipping malformed PAF line 2" in caplog.text

    def test_wrongly_typed_tags_do_not_abort_the_stream(self, query_catalog, target_catalog):
        lines = [paf(*BASE, "id:Z:abc"), paf(*BASE, "dv:Z:x"), paf(*BASE, "NM:Z:x"),
                 DEFAULT_PAF_LINES[0]]
        handle = io.StringIO("\n".join(lines) + "\n")

        reader = PafRecordReader(handle, query_catalog, target_catalog)
        records = list(reader)

        assert len(records) == 1
        assert reader.malformed_count == 3
        assert [e.line_number for e in reader.errors] == [1, 2, 3]

    def test_binary_lines(self, query_catalog, target_catalog):
        handle = io.BytesIO(("\n".join(DEFAULT_PAF_LINES) + "\n").encode())

        records = list(PafRecordReader(handle, query_catalog, target_catalog))

        assert [r.query_id for r in records] == [0, 0, 1, 2]

    def test_retained_errors_are_capped(self, query_catalog, target_catalog):
        handle = io.StringIO("bad\n" * 25)

        reader = PafRecordReader(handle, query_catalog, target_catalog, max_errors=5)
        assert list(reader) == []

        assert reader.malformed_count == 25
        assert len(reader.errors) == 5


class TestPafFiles:
    """Test whole-file reading and writing"""

    def test_write_then_read(self, tmp_path, query_catalog, target_catalog):
        source = tmp_path / "in.paf"
        source.write_text("\n".join(DEFAULT_PAF_LINES + ["broken"]) + "\n")
        records, malformed = read_paf(str(source), query_catalog, target_catalog)
        assert malformed == 1

        out = tmp_path / "out.paf"
        assert write_paf(records, str(out), query_catalog, target_catalog) == 4
        again, malformed = read_paf(str(out), query_catalog, target_catalog)

        assert malformed == 0
        for before, after in zip(records, again):
            assert (after.query_id, after.query_start, after.query_end) == \
                (before.query_id, before.query_start, before.query_end)
            assert after.strand is before.strand
            assert after.diffs == before.diffs
            assert after.cigar == before.cigar
            assert after.identity == pytest.approx(before.identity, abs=1e-5)

    def test_format_line(self, make_record, query_catalog, target_catalog):
        record = make_record(query_id=1, query_start=10, query_end=110, target_id=1,
                             target_start=0, strand=Strand.REVERSE, diffs=5,
                             query_len=800, target_len=900, cigar="95=5X")

        fields = format_paf_line(record, query_catalog, target_catalog).split("\t")

        assert fields[:12] == ["chr2", "800", "10", "110", "-", "ctgB", "900", "0", "100",
                               "95", "100", "255"]
        assert fields[12:] == ["NM:i:5", "id:f:0.95", "cg:Z:95=5X"]

    def test_format_unknown_id(self, make_record, query_catalog, target_catalog):
        with pytest.raises(FormatError):
            format_paf_line(make_record(query_id=9), query_catalog, target_catalog)

    def test_write_tsv(self, tmp_path, query_catalog, target_catalog):
        records, _ = read_paf_lines(DEFAULT_PAF_LINES, query_catalog, target_catalog)
        out = tmp_path / "table.tsv"

        assert write_tsv(records, str(out), query_catalog, target_catalog) == 4

        frame = pd.read_csv(out, sep="\t")
        assert list(frame['query_name']) == ["chr1", "chr1", "chr2", "chr3"]
        assert list(frame['strand']) == ["+", "-", "+", "+"]
        assert frame['identity'].iloc[1] == pytest.approx(0.9)


def read_paf_lines(lines, query_catalog, target_catalog):
    reader = PafRecordReader(lines, query_catalog, target_catalog)
    return list(reader), reader.malformed_count
