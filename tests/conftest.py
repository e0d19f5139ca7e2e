"""
Shared pytest fixtures for stepalign tests.

Provides small sequence sets, score matrices, temporary files and a fake
ancestral state reconstructor so that no external tool is needed.
"""

from __future__ import annotations

import tempfile
from collections.abc import Sequence
from pathlib import Path

import numpy as np
import pytest

from stepalign.core.constants import DNA_ALPHABET, GAP_CHAR
from stepalign.core.insertion import AncestralReconstruction
from stepalign.core.sequences import NamedSequenceSet
from stepalign.core.tree import TreeArena


# =============================================================================
# Sequence Fixtures
# =============================================================================


@pytest.fixture
def small_records() -> list[tuple[str, str]]:
    """Five related DNA sequences with substitutions and indels."""
    return [
        ("seqA", "ACGTACGTTAGCCGATAGGCTA"),
        ("seqB", "ACGTACGTTAGCCGATTGGCTA"),
        ("seqC", "ACGTTCGTTAGCGATAGGCTAA"),
        ("seqD", "TTACGTACGAAGCCGATAGGC"),
        ("seqE", "ACGAACGTTAGCCGTAGGCTAC"),
    ]


@pytest.fixture
def sequence_set(small_records: list[tuple[str, str]]) -> NamedSequenceSet:
    return NamedSequenceSet.from_records(small_records)


@pytest.fixture
def toy_scores() -> np.ndarray:
    """Raw score matrix where 0 and 2 are the closest pair."""
    return np.array(
        [
            [60.0, 20.0, 55.0, 10.0],
            [20.0, 60.0, 30.0, 40.0],
            [55.0, 30.0, 60.0, 15.0],
            [10.0, 40.0, 15.0, 60.0],
        ]
    )


# =============================================================================
# Temporary File Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Path:
    """Temporary directory that is cleaned up after tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fasta_file(temp_dir: Path, small_records: list[tuple[str, str]]) -> Path:
    path = temp_dir / "seqs.fasta"
    path.write_text("".join(f">{name}\n{seq}\n" for name, seq in small_records))
    return path


# =============================================================================
# Reconstruction Fixtures
# =============================================================================


class FakeReconstructor:
    """Stands in for RAxML: labels inner nodes and derives column profiles.

    Every inner node gets the same profile: per-column residue frequencies
    of the alignment with a pseudocount, so the result depends only on the
    alignment and the scores on the gap structure of each attachment.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, list[tuple[str, str]], Path]] = []

    def reconstruct(
        self,
        tree_newick: str,
        alignment: Sequence[tuple[str, str]],
        workdir: Path,
    ) -> AncestralReconstruction:
        self.calls.append((tree_newick, list(alignment), workdir))

        tree = TreeArena.from_newick(tree_newick)
        n_tips = len(tree.tips())
        inner = [n for n in tree if not n.is_tip]
        for offset, node in enumerate(inner, start=1):
            node.label = n_tips + offset

        rows = [row for _, row in alignment]
        width = len(rows[0])
        counts = np.ones((len(DNA_ALPHABET), width))
        for row in rows:
            for col, char in enumerate(row):
                if char != GAP_CHAR:
                    counts[DNA_ALPHABET.index(char), col] += 1
        profile = counts / counts.sum(axis=0)

        return AncestralReconstruction(
            newick=tree.to_newick(include_labels=True),
            profiles={node.label: profile.copy() for node in inner},
        )


@pytest.fixture
def fake_reconstructor() -> FakeReconstructor:
    return FakeReconstructor()


# =============================================================================
# CLI Testing Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Typer CLI runner for testing commands."""
    from typer.testing import CliRunner

    return CliRunner()
