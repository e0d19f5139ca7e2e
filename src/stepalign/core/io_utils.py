"""
I/O utilities for alignments and trees.

Alignments are handled as ordered name -> gapped row mappings and written
as relaxed PHYLIP (a "<count> <columns>" header followed by one row per
sequence) through BioPython.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from Bio import AlignIO
from Bio.Align import MultipleSeqAlignment
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from stepalign.core.exceptions import StepalignError


def rows_to_alignment(rows: Mapping[str, str]) -> MultipleSeqAlignment:
    """
    Convert aligned rows to a BioPython alignment.

    Raises:
        StepalignError: If the rows differ in length.
    """
    widths = {len(row) for row in rows.values()}
    if len(widths) > 1:
        raise StepalignError(f"Aligned rows differ in length: {sorted(widths)}")
    records = [SeqRecord(Seq(row), id=name, description="") for name, row in rows.items()]
    return MultipleSeqAlignment(records)


def write_phylip(rows: Mapping[str, str], path: Path) -> None:
    """Write aligned rows as relaxed PHYLIP."""
    path.parent.mkdir(parents=True, exist_ok=True)
    AlignIO.write(rows_to_alignment(rows), path, "phylip-relaxed")


def write_newick(newick: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(newick.strip() + "\n")
