"""
Unit tests for the named sequence collection.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from stepalign.core.exceptions import (
    EmptySequenceSetError,
    SequenceNameNotFoundError,
    StaleNameIndexError,
    StepalignError,
)
from stepalign.core.sequences import NamedSequenceSet, Sequence, map_residues, normalize_residues


class TestNormalisation:
    """Tests for residue normalisation and mapping."""

    def test_uppercases_and_drops_foreign_symbols(self):
        assert normalize_residues("ac-gtN nRt") == "ACGTT"

    def test_map_residues(self):
        assert map_residues("ACGT") == (0, 1, 2, 3)

    def test_raw_and_mapped_have_equal_length(self):
        seq = Sequence.from_raw("s", "aCg-TnnA")
        assert seq.raw == "ACGTA"
        assert len(seq.mapped) == len(seq.raw) == len(seq)


class TestNamedSequenceSet:
    """Tests for NamedSequenceSet lookups and insertion."""

    def test_index_of(self, sequence_set: NamedSequenceSet):
        assert sequence_set.index_of("seqC") == 2
        assert sequence_set.name_at(2) == "seqC"

    def test_unknown_name_raises(self, sequence_set: NamedSequenceSet):
        with pytest.raises(SequenceNameNotFoundError):
            sequence_set.index_of("nope")

    def test_add_fast_marks_index_stale(self, sequence_set: NamedSequenceSet):
        sequence_set.add_fast(Sequence.from_raw("aaa", "ACGT"))
        with pytest.raises(StaleNameIndexError):
            sequence_set.index_of("aaa")

        sequence_set.sort_index()
        assert sequence_set.index_of("aaa") == 5

    def test_add_keeps_lookup_sorted(self, sequence_set: NamedSequenceSet):
        idx = sequence_set.add(Sequence.from_raw("aardvark", "ACGT"))
        assert sequence_set.index_of("aardvark") == idx
        assert sequence_set.index_of("seqA") == 0

    def test_add_rejects_duplicates(self, sequence_set: NamedSequenceSet):
        with pytest.raises(StepalignError, match="Duplicate"):
            sequence_set.add(Sequence.from_raw("seqA", "ACGT"))

    def test_clone(self, sequence_set: NamedSequenceSet):
        idx = sequence_set.clone(1, "seqB_clone")
        assert sequence_set.raw_at(idx) == sequence_set.raw_at(1)
        assert sequence_set.mapped_at(idx) == sequence_set.mapped_at(1)
        assert sequence_set.index_of("seqB_clone") == idx


class TestFromFasta:
    """Tests for FASTA input."""

    def test_reads_all_records(self, fasta_file: Path):
        seqs = NamedSequenceSet.from_fasta(fasta_file)
        assert len(seqs) == 5
        assert seqs.names == ["seqA", "seqB", "seqC", "seqD", "seqE"]

    def test_skips_records_without_residues(self, temp_dir: Path):
        path = temp_dir / "x.fasta"
        path.write_text(">a\nACGT\n>empty\nNNNN\n>b\nAGGT\n")
        seqs = NamedSequenceSet.from_fasta(path)
        assert seqs.names == ["a", "b"]

    def test_too_few_sequences(self, temp_dir: Path):
        path = temp_dir / "one.fasta"
        path.write_text(">a\nACGT\n")
        with pytest.raises(EmptySequenceSetError):
            NamedSequenceSet.from_fasta(path)

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(FileNotFoundError):
            NamedSequenceSet.from_fasta(temp_dir / "missing.fasta")
