"""
RAxML wrapper for marginal ancestral state reconstruction.

raxmlHPC -f A reads a fixed tree and an alignment and writes, among
others:

- RAxML_nodeLabelledRootedTree.<run>: the input tree rooted and with a
  numeric label on every inner node
- RAxML_marginalAncestralProbabilities.<run>: for each inner node, a line
  with the node number followed by one line of state probabilities
  (A C G T) per alignment column; blocks are separated by blank lines
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import ClassVar

import numpy as np

from stepalign.core.constants import ALIGNMENT_FILE_NAME, TREE_FILE_NAME
from stepalign.core.exceptions import AncestralStateFormatError
from stepalign.core.insertion import AncestralReconstruction
from stepalign.core.io_utils import write_newick, write_phylip
from stepalign.external.base import ExternalTool, check_path
from stepalign.models.config import RAxMLConfig

logger = logging.getLogger(__name__)

LABELLED_TREE_PREFIX = "RAxML_nodeLabelledRootedTree"
MARGINAL_PROBS_PREFIX = "RAxML_marginalAncestralProbabilities"

# Label of the virtual root in RAxML's rooted outputs
ROOT_LABEL = "ROOT"


def parse_marginal_probabilities(text: str, source: str = "<string>") -> dict[int, np.ndarray]:
    """Parse marginal ancestral probabilities into per-node matrices.

    The block of the virtual root that RAxML adds when rooting the tree
    (header ROOT) is checked and then dropped; it is not an attachment
    point.

    Args:
        text: File content.
        source: Name used in error messages.

    Returns:
        Node number -> (states x columns) float64 matrix.

    Raises:
        AncestralStateFormatError: On a malformed block, a repeated node
            number or a column count that differs between nodes.
    """
    profiles: dict[int, np.ndarray] = {}
    node: int | str | None = None
    columns: list[list[float]] = []

    def finish() -> None:
        if node is None:
            return
        if node == ROOT_LABEL:
            if not columns:
                raise AncestralStateFormatError(source, "ROOT block has no probability lines")
            return
        if not columns:
            raise AncestralStateFormatError(source, f"node {node} has no probability lines")
        if node in profiles:
            raise AncestralStateFormatError(source, f"node {node} appears twice")
        widths = {len(c) for c in columns}
        if len(widths) != 1:
            raise AncestralStateFormatError(source, f"node {node} has ragged probability lines")
        profiles[node] = np.array(columns, dtype=np.float64).T

    for lineno, line in enumerate(text.splitlines(), start=1):
        fields = line.split()
        if not fields:
            finish()
            node, columns = None, []
            continue

        if node is None:
            if len(fields) != 1:
                raise AncestralStateFormatError(source, f"line {lineno}: expected a node number")
            if fields[0] == ROOT_LABEL:
                node = ROOT_LABEL
                continue
            try:
                node = int(fields[0])
            except ValueError:
                raise AncestralStateFormatError(
                    source, f"line {lineno}: invalid node number {fields[0]!r}"
                ) from None
            continue

        try:
            columns.append([float(f) for f in fields])
        except ValueError:
            raise AncestralStateFormatError(
                source, f"line {lineno}: invalid probabilities {line.strip()!r}"
            ) from None
    finish()

    lengths = {p.shape[1] for p in profiles.values()}
    if len(lengths) > 1:
        raise AncestralStateFormatError(source, f"nodes disagree on column count: {sorted(lengths)}")

    logger.debug("Parsed marginal probabilities for %d nodes from %s", len(profiles), source)
    return profiles


class RAxMLAncestral(ExternalTool):
    """Marginal ancestral state reconstruction with raxmlHPC -f A.

    Example:
        >>> raxml = RAxMLAncestral(RAxMLConfig(seed=42))
        >>> recon = raxml.reconstruct(newick, rows, Path("work/step_0000"))
        >>> recon.profiles[5].shape
        (4, 812)
    """

    TOOL_NAME: ClassVar[str] = "raxmlHPC"
    TOOL_ALIASES: ClassVar[tuple[str, ...]] = (
        "raxmlHPC-SSE3",
        "raxmlHPC-AVX",
        "raxmlHPC-AVX2",
        "raxmlHPC-PTHREADS",
        "raxmlHPC-PTHREADS-SSE3",
        "raxmlHPC-PTHREADS-AVX",
        "raxmlHPC-PTHREADS-AVX2",
    )
    INSTALL_HINT: ClassVar[str] = "conda install -c bioconda raxml"

    def __init__(self, config: RAxMLConfig | None = None) -> None:
        self.config = config or RAxMLConfig()

    def build_command(
        self,
        *,
        tree: Path,
        alignment: Path,
        workdir: Path,
    ) -> list[str]:
        """Build the raxmlHPC command.

        RAxML requires an absolute work directory (-w) and refuses to
        overwrite outputs of an existing run name there.
        """
        exe = str(self.get_executable())
        return [
            exe,
            "-f", "A",
            "-t", str(tree),
            "-s", str(alignment),
            "-m", self.config.model,
            "-n", self.config.run_name,
            "-w", str(workdir),
            "-p", str(self.config.seed),
        ]

    def output_paths(self, workdir: Path) -> tuple[Path, Path]:
        """Paths of the labelled tree and the marginal probabilities."""
        run = self.config.run_name
        return (
            workdir / f"{LABELLED_TREE_PREFIX}.{run}",
            workdir / f"{MARGINAL_PROBS_PREFIX}.{run}",
        )

    def reconstruct(
        self,
        tree_newick: str,
        alignment: Sequence[tuple[str, str]],
        workdir: Path,
    ) -> AncestralReconstruction:
        """Write inputs, run RAxML and parse its outputs.

        Raises:
            ToolNotFoundError: If raxmlHPC is not installed.
            ToolExecutionError: If RAxML exits with an error.
            AncestralStateFormatError: If an output file is missing or
                does not match the alignment.
        """
        workdir = check_path(workdir)
        workdir.mkdir(parents=True, exist_ok=True)
        rows = dict(alignment)
        tree_path = workdir / TREE_FILE_NAME
        ali_path = workdir / ALIGNMENT_FILE_NAME
        write_newick(tree_newick, tree_path)
        write_phylip(rows, ali_path)

        self.run_or_raise(
            timeout=self.config.timeout,
            tree=tree_path,
            alignment=ali_path,
            workdir=workdir,
        )

        labelled_path, probs_path = self.output_paths(workdir)
        for path in (labelled_path, probs_path):
            if not path.exists():
                raise AncestralStateFormatError(str(path), "file was not written")

        profiles = parse_marginal_probabilities(probs_path.read_text(), str(probs_path))
        n_columns = len(next(iter(rows.values()), ""))
        for node, matrix in profiles.items():
            if matrix.shape[1] != n_columns:
                raise AncestralStateFormatError(
                    str(probs_path),
                    f"node {node} has {matrix.shape[1]} columns, alignment has {n_columns}",
                )

        logger.info("Reconstructed %d ancestral profiles in %s", len(profiles), workdir)
        return AncestralReconstruction(newick=labelled_path.read_text().strip(), profiles=profiles)
