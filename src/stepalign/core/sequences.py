"""
Named sequence collection used by the insertion engine.

Sequences are normalised on entry: residues are upper-cased and every
character outside the scoring alphabet (gaps, ambiguity codes, whitespace)
is dropped. The mapped sequence holds the scoring-matrix state index of
each residue.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from stepalign.core.constants import DNA_ALPHABET
from stepalign.core.exceptions import (
    EmptySequenceSetError,
    SequenceNameNotFoundError,
    StaleNameIndexError,
    StepalignError,
)

logger = logging.getLogger(__name__)

_STATE_INDEX = {c: i for i, c in enumerate(DNA_ALPHABET)}


def normalize_residues(raw: str) -> str:
    """Upper-case a residue string and drop characters outside the alphabet."""
    return "".join(c for c in raw.upper() if c in _STATE_INDEX)


def map_residues(residues: str) -> tuple[int, ...]:
    """Map residues to scoring-matrix state indices, dropping unknown symbols."""
    return tuple(_STATE_INDEX[c] for c in residues.upper() if c in _STATE_INDEX)


@dataclass(frozen=True)
class Sequence:
    """A named sequence with its raw residues and mapped states.

    Attributes:
        name: Sequence identifier (FASTA header up to the first whitespace).
        raw: Normalised residue string.
        mapped: State index per residue (index into DNA_ALPHABET).
    """

    name: str
    raw: str
    mapped: tuple[int, ...]

    @classmethod
    def from_raw(cls, name: str, raw: str) -> Sequence:
        residues = normalize_residues(raw)
        return cls(name=name, raw=residues, mapped=map_residues(residues))

    def __len__(self) -> int:
        return len(self.raw)


class NamedSequenceSet:
    """Owns raw and mapped sequences plus a sorted name -> index lookup.

    The lookup is a sorted list searched with bisect. add_fast() appends
    without keeping it sorted; querying before sort_index() is a caller
    error and raises StaleNameIndexError.
    """

    def __init__(self, sequences: Iterable[Sequence] = ()) -> None:
        self._sequences: list[Sequence] = []
        self._index: list[tuple[str, int]] = []
        self._sorted = True

        for seq in sequences:
            self.add_fast(seq)
        self.sort_index()

    @classmethod
    def from_records(cls, records: Iterable[tuple[str, str]]) -> NamedSequenceSet:
        """Build a set from (name, residues) pairs."""
        return cls(Sequence.from_raw(name, raw) for name, raw in records)

    @classmethod
    def from_fasta(cls, path: Path) -> NamedSequenceSet:
        """Read and normalise all records of a FASTA file.

        Raises:
            FileNotFoundError: If the file does not exist.
            EmptySequenceSetError: If fewer than two records have residues left.
        """
        from Bio import SeqIO

        if not path.exists():
            raise FileNotFoundError(f"Sequence file not found: {path}")

        seqs = []
        for record in SeqIO.parse(str(path), "fasta"):
            seq = Sequence.from_raw(record.id, str(record.seq))
            if len(seq) == 0:
                logger.warning("Skipping %s: no residues from the alphabet", record.id)
                continue
            seqs.append(seq)

        if len(seqs) < 2:
            raise EmptySequenceSetError(str(path), len(seqs))

        logger.info("Read %d sequences from %s", len(seqs), path)
        return cls(seqs)

    def __len__(self) -> int:
        return len(self._sequences)

    def __getitem__(self, index: int) -> Sequence:
        return self._sequences[index]

    @property
    def names(self) -> list[str]:
        return [s.name for s in self._sequences]

    @property
    def mapped_sequences(self) -> list[tuple[int, ...]]:
        return [s.mapped for s in self._sequences]

    def name_at(self, index: int) -> str:
        return self._sequences[index].name

    def raw_at(self, index: int) -> str:
        return self._sequences[index].raw

    def mapped_at(self, index: int) -> tuple[int, ...]:
        return self._sequences[index].mapped

    def add_fast(self, seq: Sequence) -> int:
        """Append a sequence without maintaining the lookup order."""
        self._sequences.append(seq)
        self._index.append((seq.name, len(self._sequences) - 1))
        self._sorted = False
        return len(self._sequences) - 1

    def sort_index(self) -> None:
        if not self._sorted:
            self._index.sort()
            self._sorted = True

    def add(self, seq: Sequence) -> int:
        """Append a sequence and insert its name into the sorted lookup."""
        if not self._sorted:
            raise StaleNameIndexError
        if self._find(seq.name) is not None:
            raise StepalignError(f"Duplicate sequence name: {seq.name}")

        self._sequences.append(seq)
        idx = len(self._sequences) - 1
        bisect.insort(self._index, (seq.name, idx))
        return idx

    def clone(self, index: int, name: str) -> int:
        """Append a copy of sequence `index` under a new name.

        Returns:
            Index of the clone.
        """
        src = self._sequences[index]
        return self.add(Sequence(name=name, raw=src.raw, mapped=src.mapped))

    def index_of(self, name: str) -> int:
        """Resolve a name to its index.

        Raises:
            StaleNameIndexError: If the lookup was not re-sorted after add_fast().
            SequenceNameNotFoundError: If the name is unknown.
        """
        if not self._sorted:
            raise StaleNameIndexError
        idx = self._find(name)
        if idx is None:
            raise SequenceNameNotFoundError(name)
        return idx

    def _find(self, name: str) -> int | None:
        pos = bisect.bisect_left(self._index, (name, -1))
        if pos < len(self._index) and self._index[pos][0] == name:
            return self._index[pos][1]
        return None
