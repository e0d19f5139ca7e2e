"""
Stepwise insertion engine.

Grows a tree and its alignment one sequence at a time. Each step:

1. runs marginal ancestral state reconstruction on the current tree and
   alignment (external tool, behind the AncestralReconstructor protocol)
2. rebuilds the tree from the node-labelled reconstruction output
3. fits the two-state gap model to the realised gap frequency
4. asks the addition-order planner for the next candidate
5. splices a virtual root onto the attachment edge of every labelled
   node, refreshes ancestral vectors and scores the candidate against the
   node's profile with the log-odds Viterbi aligner
6. commits the best-scoring attachment into tree and alignment
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import numpy as np

from stepalign.core.addition_order import AdditionOrder
from stepalign.core.aligner import LogOddsViterbi
from stepalign.core.ancestral import gap_profile
from stepalign.core.constants import CLONE_SUFFIX
from stepalign.core.exceptions import AncestralStateFormatError, TopologyError
from stepalign.core.gap_model import ProbGapModel, gap_model_scope, realized_gap_frequency
from stepalign.core.io_utils import write_newick, write_phylip
from stepalign.core.pairwise import align_freeshift
from stepalign.core.sequences import NamedSequenceSet
from stepalign.core.tree import TreeArena
from stepalign.models.config import StepalignConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AncestralReconstruction:
    """Output of one marginal ancestral state reconstruction.

    Attributes:
        newick: Tree with numeric labels on its inner nodes.
        profiles: Label -> (states x columns) marginal probability matrix.
    """

    newick: str
    profiles: dict[int, np.ndarray]


class AncestralReconstructor(Protocol):
    def reconstruct(
        self,
        tree_newick: str,
        alignment: Sequence[tuple[str, str]],
        workdir: Path,
    ) -> AncestralReconstruction: ...


@dataclass(frozen=True)
class InsertionResult:
    """Outcome of one insertion step."""

    candidate: int
    name: str
    scores: dict[int, float] = field(repr=False)
    label: int
    score: float
    n_columns: int


class StepwiseInserter:
    """Drives the insertion loop over an initialised addition order.

    The planner's seed pair is bootstrapped into a quartet: each seed
    sequence and a clone of it named "<name>_clone", aligned with the
    freeshift aligner. Clones stay in the tree for the whole run.

    Example:
        >>> order = AdditionOrder()
        >>> order.initialize(scores)
        >>> inserter = StepwiseInserter(sequences, order, RAxMLAncestral())
        >>> inserter.run(Path("work"))
        >>> inserter.write_alignment(Path("out.phy"))
    """

    def __init__(
        self,
        sequences: NamedSequenceSet,
        order: AdditionOrder,
        reconstructor: AncestralReconstructor,
        config: StepalignConfig | None = None,
    ) -> None:
        self._sequences = sequences
        self._order = order
        self._reconstructor = reconstructor
        self._config = config or StepalignConfig()
        self._steps = 0

        a, b = order.first_pair
        name_a = sequences.name_at(a)
        name_b = sequences.name_at(b)
        clone_a = name_a + CLONE_SUFFIX
        clone_b = name_b + CLONE_SUFFIX
        sequences.clone(a, clone_a)
        sequences.clone(b, clone_b)

        row_a, row_b = align_freeshift(sequences.raw_at(a), sequences.raw_at(b), self._config.scoring)
        self._rows: dict[str, str] = {
            name_a: row_a,
            clone_a: row_a,
            name_b: row_b,
            clone_b: row_b,
        }
        self._inserted: list[int] = [a, b]
        self._tree = TreeArena.build_quartet(
            name_a, clone_a, name_b, clone_b, self._config.insertion.default_branch_length
        )
        logger.info("Seed quartet: %s, %s (%d columns)", name_a, name_b, len(row_a))

    @property
    def tree(self) -> TreeArena:
        return self._tree

    @property
    def inserted(self) -> list[int]:
        """Indices of the sequences placed so far, in insertion order."""
        return list(self._inserted)

    def alignment_rows(self) -> dict[str, str]:
        return dict(self._rows)

    def _profile_for(
        self, reconstruction: AncestralReconstruction, label: int, n_columns: int
    ) -> np.ndarray:
        profile = reconstruction.profiles.get(label)
        if profile is None:
            raise AncestralStateFormatError(
                "reconstruction", f"no marginal probabilities for node {label}"
            )
        if profile.ndim != 2 or profile.shape[1] != n_columns:
            raise AncestralStateFormatError(
                "reconstruction",
                f"node {label} has shape {profile.shape}, alignment has {n_columns} columns",
            )
        return profile

    def insertion_step(self, workdir: Path) -> InsertionResult | None:
        """Insert the next candidate at its best-scoring attachment.

        Args:
            workdir: Parent directory for this step's reconstruction files.

        Returns:
            The insertion result, or None when every sequence is placed.

        Raises:
            AncestralStateFormatError: If a labelled node has no usable profile.
            TopologyError: If the reconstructed tree has no labelled nodes.
        """
        insertion = self._config.insertion
        step_dir = workdir / f"step_{self._steps:04d}"
        self._steps += 1

        reconstruction = self._reconstructor.reconstruct(
            self._tree.to_newick(), list(self._rows.items()), step_dir
        )
        tree = TreeArena.from_newick(reconstruction.newick)
        tree.set_tip_vectors(self._rows, insertion.vector_model)

        gap_freq = realized_gap_frequency(self._rows.values())
        model = ProbGapModel(gap_freq)

        candidate = self._order.next_candidate()
        if candidate is None:
            logger.info("All sequences inserted")
            return None

        name = self._sequences.name_at(candidate)
        query = self._sequences.mapped_at(candidate)
        labelled = tree.labelled_nodes()
        if not labelled:
            raise TopologyError("Reconstructed tree has no labelled inner nodes")
        logger.info("Candidate %d (%s) against %d attachment nodes", candidate, name, len(labelled))

        n_columns = len(next(iter(self._rows.values())))
        scores: dict[int, float] = {}
        best_label: int | None = None
        best_score = -np.inf
        best_node = labelled[0]
        best_aligner: LogOddsViterbi | None = None

        root = tree.create_node()
        with gap_model_scope(model):
            for k, node in enumerate(labelled):
                label = tree.node(node).label
                profile = self._profile_for(reconstruction, label, n_columns)

                with tree.splice(root, tree.attachment_edge(node)):
                    steps = tree.traversal_order(root, incremental=insertion.incremental and k > 0)
                    tree.apply_traversal(steps, model)
                    gaps = gap_profile(tree.node(root).vector, gap_freq)

                aligner = LogOddsViterbi(profile, gaps, insertion.background_freqs)
                score = aligner.align(query)
                scores[label] = score
                logger.info("  node %d: score %.4f (%d newviews)", label, score, len(steps))

                if best_label is None or score > best_score:
                    best_label, best_score, best_node, best_aligner = label, score, node, aligner
        tree.release_node(root)

        path = best_aligner.align_path(query)
        names = list(self._rows)
        new_row, widened = path.render(self._sequences.raw_at(candidate), list(self._rows.values()))
        self._rows = dict(zip(names, widened))
        self._rows[name] = new_row

        tree.insert_leaf(tree.attachment_edge(best_node), name, insertion.default_branch_length)
        self._tree = tree
        self._inserted.append(candidate)

        logger.info("Inserted %s at node %d (score %.4f)", name, best_label, best_score)
        return InsertionResult(
            candidate=candidate,
            name=name,
            scores=scores,
            label=best_label,
            score=best_score,
            n_columns=len(new_row),
        )

    def run(self, workdir: Path, max_insertions: int | None = None) -> list[InsertionResult]:
        """Insert candidates until the planner is exhausted or the cap is hit."""
        limit = max_insertions if max_insertions is not None else self._config.insertion.max_insertions
        results: list[InsertionResult] = []
        while limit is None or len(results) < limit:
            result = self.insertion_step(workdir)
            if result is None:
                break
            results.append(result)
        return results

    def write_alignment(self, path: Path) -> None:
        write_phylip(self._rows, path)

    def write_tree(self, path: Path) -> None:
        write_newick(self._tree.to_newick(), path)
