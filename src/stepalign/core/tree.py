"""
Unrooted binary tree topology with reversible edge splicing.

Nodes live in an arena and refer to each other by index. Every node has
three neighbour slots; a tip uses slot 0 only. Each slot stores the branch
length and an optional edge label, mirrored on both ends of the edge.

Inner nodes cache an ancestral vector together with the slot it was
computed towards (its parent side). A cached vector stays valid as long as
the subtrees behind the other two slots are unchanged, which is what makes
incremental traversals after a splice rollback safe.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from io import StringIO
from typing import TYPE_CHECKING, NamedTuple

from stepalign.core.ancestral import AncestralVector, TipCase, VectorModel, newview, tip_vector
from stepalign.core.constants import (
    DEFAULT_BRANCH_LENGTH,
    QUARTET_INNER_EDGE,
    QUARTET_PENDANT_EDGES,
)
from stepalign.core.exceptions import SequenceNameNotFoundError, TopologyError
from stepalign.core.gap_model import ProbGapModel

if TYPE_CHECKING:
    from Bio.Phylo.BaseTree import Clade

logger = logging.getLogger(__name__)

N_SLOTS = 3


class Edge(NamedTuple):
    """One end of an edge: a node and the slot that holds the edge."""

    node: int
    slot: int


@dataclass
class TreeNode:
    """A tip or inner node of the arena."""

    index: int
    is_tip: bool = False
    name: str | None = None
    label: int | None = None
    neighbors: list[int | None] = field(default_factory=lambda: [None] * N_SLOTS)
    lengths: list[float] = field(default_factory=lambda: [0.0] * N_SLOTS)
    edge_labels: list[str | None] = field(default_factory=lambda: [None] * N_SLOTS)
    vector: AncestralVector | None = None
    oriented_slot: int | None = None

    @property
    def degree(self) -> int:
        return sum(n is not None for n in self.neighbors)

    def slot_of(self, other: int) -> int:
        for slot, nb in enumerate(self.neighbors):
            if nb == other:
                return slot
        raise TopologyError(f"Node {other} is not a neighbour of node {self.index}")


@dataclass(frozen=True)
class Bifurcation:
    """One newview step: combine child1 and child2 into parent.

    parent_slot is the slot of parent that points away from the children,
    i.e. the orientation the resulting vector is valid for.
    """

    parent: int
    child1: int
    child2: int
    z1: float
    z2: float
    tip_case: TipCase
    parent_slot: int


class SpliceHandle:
    """Result of TreeArena.splice(); commit() keeps the splice in place."""

    def __init__(self, node: int, left: Edge, right: Edge, length: float, label: str | None):
        self.node = node
        self.left = left
        self.right = right
        self.length = length
        self.label = label
        self.committed = False

    def commit(self) -> None:
        self.committed = True


class TreeArena:
    """Index-addressed storage for an unrooted binary tree.

    Example:
        >>> tree = TreeArena.build_quartet("a", "a_clone", "b", "b_clone")
        >>> root = tree.create_node()
        >>> with tree.splice(root, tree.attachment_edge(node)):
        ...     tree.apply_traversal(tree.traversal_order(root), model)
    """

    def __init__(self) -> None:
        self._nodes: list[TreeNode] = []
        self._free: list[int] = []

    # ------------------------------------------------------------------
    # Node lifetime
    # ------------------------------------------------------------------

    def _allocate(self) -> TreeNode:
        if self._free:
            idx = self._free.pop()
            self._nodes[idx] = TreeNode(index=idx)
        else:
            idx = len(self._nodes)
            self._nodes.append(TreeNode(index=idx))
        return self._nodes[idx]

    def create_node(self, label: int | None = None) -> int:
        """Create a detached inner node."""
        node = self._allocate()
        node.label = label
        return node.index

    def create_tip(self, name: str) -> int:
        """Create a detached tip."""
        node = self._allocate()
        node.is_tip = True
        node.name = name
        return node.index

    def release_node(self, index: int) -> None:
        """Return a detached node to the free list.

        Raises:
            TopologyError: If the node still has neighbours.
        """
        node = self.node(index)
        if node.degree:
            raise TopologyError(f"Cannot release node {index}: it still has {node.degree} edges")
        self._free.append(index)

    def node(self, index: int) -> TreeNode:
        if index < 0 or index >= len(self._nodes) or index in self._free:
            raise TopologyError(f"No live node with index {index}")
        return self._nodes[index]

    def __iter__(self) -> Iterator[TreeNode]:
        free = set(self._free)
        return (n for n in self._nodes if n.index not in free)

    @property
    def node_count(self) -> int:
        return len(self._nodes) - len(self._free)

    @property
    def edge_count(self) -> int:
        return sum(n.degree for n in self) // 2

    def tips(self) -> list[int]:
        return [n.index for n in self if n.is_tip]

    def tip_names(self) -> list[str]:
        return [n.name for n in self if n.is_tip and n.name is not None]

    def labelled_nodes(self) -> list[int]:
        """Inner nodes carrying a reconstruction label, in ascending label order."""
        labelled = [n for n in self if not n.is_tip and n.label is not None]
        return [n.index for n in sorted(labelled, key=lambda n: n.label)]

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def _free_slot(self, node: TreeNode) -> int:
        slots = (0,) if node.is_tip else range(N_SLOTS)
        for slot in slots:
            if node.neighbors[slot] is None:
                return slot
        raise TopologyError(f"Node {node.index} has no free slot")

    def _set_slot(
        self, node: TreeNode, slot: int, other: int | None, length: float, label: str | None
    ) -> None:
        node.neighbors[slot] = other
        node.lengths[slot] = length if other is not None else 0.0
        node.edge_labels[slot] = label if other is not None else None

    def connect(
        self, a: int, b: int, length: float = DEFAULT_BRANCH_LENGTH, label: str | None = None
    ) -> tuple[Edge, Edge]:
        """Join two nodes through their first free slots.

        Returns:
            The edge as seen from a and from b.
        """
        if a == b:
            raise TopologyError(f"Cannot connect node {a} to itself")
        node_a = self.node(a)
        node_b = self.node(b)
        slot_a = self._free_slot(node_a)
        slot_b = self._free_slot(node_b)
        self._set_slot(node_a, slot_a, b, length, label)
        self._set_slot(node_b, slot_b, a, length, label)
        return Edge(a, slot_a), Edge(b, slot_b)

    def other_end(self, edge: Edge) -> Edge:
        """Return the far end of an edge."""
        other = self.node(edge.node).neighbors[edge.slot]
        if other is None:
            raise TopologyError(f"Slot {edge.slot} of node {edge.node} is empty")
        return Edge(other, self.node(other).slot_of(edge.node))

    def attachment_edge(self, index: int) -> Edge:
        """The edge a labelled inner node offers as an insertion point (slot 0)."""
        node = self.node(index)
        if node.is_tip or node.neighbors[0] is None:
            raise TopologyError(f"Node {index} has no attachment edge")
        return Edge(index, 0)

    @contextmanager
    def splice(self, index: int, edge: Edge) -> Iterator[SpliceHandle]:
        """Insert a detached inner node into the middle of an edge.

        Both halves get half the original length and keep its label. Unless
        the handle is committed, the original edge is restored exactly (same
        slots, length and label) when the block exits, also on error.

        Raises:
            TopologyError: If the node is a tip or not detached, or the
                edge slot is empty.
        """
        node = self.node(index)
        if node.is_tip or node.degree:
            raise TopologyError(f"Node {index} must be a detached inner node to splice")

        left = edge
        right = self.other_end(edge)
        node_l = self.node(left.node)
        node_r = self.node(right.node)
        length = node_l.lengths[left.slot]
        label = node_l.edge_labels[left.slot]
        half = length / 2.0

        self._set_slot(node_l, left.slot, index, half, label)
        self._set_slot(node_r, right.slot, index, half, label)
        self._set_slot(node, 0, left.node, half, label)
        self._set_slot(node, 1, right.node, half, label)

        handle = SpliceHandle(index, left, right, length, label)
        try:
            yield handle
        finally:
            if not handle.committed:
                for slot in range(N_SLOTS):
                    self._set_slot(node, slot, None, 0.0, None)
                self._set_slot(node_l, left.slot, right.node, length, label)
                self._set_slot(node_r, right.slot, left.node, length, label)

    def insert_leaf(
        self, edge: Edge, tip_name: str, pendant_length: float = DEFAULT_BRANCH_LENGTH
    ) -> int:
        """Permanently attach a new tip in the middle of an edge.

        Returns:
            Index of the new tip.
        """
        inner = self.create_node()
        with self.splice(inner, edge) as handle:
            handle.commit()
        tip = self.create_tip(tip_name)
        self.connect(inner, tip, pendant_length)
        self.invalidate_vectors()
        logger.debug("Inserted %s on edge %d-%d", tip_name, handle.left.node, handle.right.node)
        return tip

    # ------------------------------------------------------------------
    # Ancestral vectors
    # ------------------------------------------------------------------

    def invalidate_vectors(self) -> None:
        for node in self:
            if not node.is_tip:
                node.vector = None
                node.oriented_slot = None

    def set_tip_vectors(self, rows: Mapping[str, str], model: VectorModel) -> None:
        """Initialise tip vectors from aligned rows and drop inner vectors.

        Raises:
            SequenceNameNotFoundError: If a tip has no aligned row.
        """
        for node in self:
            if node.is_tip:
                if node.name not in rows:
                    raise SequenceNameNotFoundError(str(node.name))
                node.vector = tip_vector(rows[node.name], model)
        self.invalidate_vectors()

    def _children(self, index: int, parent_slot: int) -> tuple[Edge, Edge]:
        node = self.node(index)
        slots = [s for s in range(N_SLOTS) if s != parent_slot]
        if any(node.neighbors[s] is None for s in slots):
            raise TopologyError(f"Inner node {index} is not a bifurcation below slot {parent_slot}")
        return Edge(index, slots[0]), Edge(index, slots[1])

    def _bifurcation(self, index: int, parent_slot: int) -> Bifurcation:
        node = self.node(index)
        e1, e2 = self._children(index, parent_slot)
        c1 = node.neighbors[e1.slot]
        c2 = node.neighbors[e2.slot]
        return Bifurcation(
            parent=index,
            child1=c1,
            child2=c2,
            z1=node.lengths[e1.slot],
            z2=node.lengths[e2.slot],
            tip_case=TipCase.from_tips(self.node(c1).is_tip, self.node(c2).is_tip),
            parent_slot=parent_slot,
        )

    def traversal_order(self, root: int, incremental: bool = False) -> list[Bifurcation]:
        """Post-order list of newview steps that brings `root` up to date.

        The root must be an inner node with exactly two neighbours (a
        spliced virtual root) and is always recomputed. With `incremental`,
        inner nodes whose cached vector already points towards their
        parent are skipped together with their subtrees.

        Raises:
            TopologyError: If the root is not a bifurcation.
        """
        root_node = self.node(root)
        free = [s for s in range(N_SLOTS) if root_node.neighbors[s] is None]
        if root_node.is_tip or len(free) != 1:
            raise TopologyError(f"Traversal root {root} must be an inner node with two neighbours")

        order: list[Bifurcation] = []
        stack: list[tuple[int, int, bool]] = [(root, free[0], False)]
        while stack:
            index, parent_slot, expanded = stack.pop()
            node = self.node(index)
            if expanded:
                order.append(self._bifurcation(index, parent_slot))
                continue
            if (
                index != root
                and incremental
                and node.vector is not None
                and node.oriented_slot == parent_slot
            ):
                continue

            stack.append((index, parent_slot, True))
            for edge in reversed(self._children(index, parent_slot)):
                child = self.other_end(edge)
                if not self.node(child.node).is_tip:
                    stack.append((child.node, child.slot, False))

        return order

    def apply_traversal(self, order: list[Bifurcation], model: ProbGapModel | None = None) -> None:
        """Run newview over a traversal order and record orientations."""
        for step in order:
            c1 = self.node(step.child1).vector
            c2 = self.node(step.child2).vector
            if c1 is None or c2 is None:
                raise TopologyError(
                    f"Missing child vector below node {step.parent}; initialise tip vectors first"
                )
            parent = self.node(step.parent)
            parent.vector = newview(c1, c2, step.z1, step.z2, step.tip_case, model)
            parent.oriented_slot = step.parent_slot
            logger.debug(
                "newview %d <- (%d, %d) %s", step.parent, step.child1, step.child2, step.tip_case.value
            )

    # ------------------------------------------------------------------
    # Construction and Newick I/O
    # ------------------------------------------------------------------

    @classmethod
    def build_quartet(
        cls,
        name_a: str,
        clone_a: str,
        name_b: str,
        clone_b: str,
        branch_length: float = DEFAULT_BRANCH_LENGTH,
    ) -> TreeArena:
        """Build the seed tree ((a, a_clone), (b, b_clone)).

        The inner edge is labelled QUARTET_INNER_EDGE and the pendant edges
        QUARTET_PENDANT_EDGES in tip order; every edge has `branch_length`.
        """
        tree = cls()
        nx = tree.create_node()
        ny = tree.create_node()
        tree.connect(nx, ny, branch_length, QUARTET_INNER_EDGE)

        for inner, name, label in zip(
            (nx, nx, ny, ny), (name_a, clone_a, name_b, clone_b), QUARTET_PENDANT_EDGES
        ):
            tree.connect(inner, tree.create_tip(name), branch_length, label)
        return tree

    def _clade_node(self, clade: Clade) -> int:
        if clade.is_terminal():
            if not clade.name:
                raise TopologyError("Tree has a tip without a name")
            return self.create_tip(clade.name)
        return self.create_node(_clade_label(clade))

    @classmethod
    def from_newick(cls, text: str) -> TreeArena:
        """Parse a binary Newick tree.

        A rooted input (bifurcating root) is unrooted by joining the two
        root children with the sum of their branch lengths. Numeric inner
        node labels are kept as node labels.

        Slot 0 of every inner node holds its rootward edge, which is its
        attachment edge. On a rooted input the first root child keeps the
        joining edge and the second gets an edge towards its own subtree,
        so no two inner nodes share an attachment edge.

        Raises:
            TopologyError: If the tree is not binary.
        """
        from Bio import Phylo

        parsed = Phylo.read(StringIO(text), "newick")
        tree = cls()
        root = parsed.root
        stack: list[tuple[Clade, int]] = []

        if len(root.clades) == 2:
            a, b = root.clades
            ia = tree._clade_node(a)
            ib = tree._clade_node(b)
            tree.connect(ia, ib, (a.branch_length or 0.0) + (b.branch_length or 0.0))
            stack.extend([(a, ia), (b, ib)])
        elif len(root.clades) == 3:
            ir = tree._clade_node(root)
            for child in root.clades:
                ic = tree._clade_node(child)
                tree.connect(ir, ic, child.branch_length or 0.0)
                stack.append((child, ic))
        else:
            raise TopologyError(f"Tree root has {len(root.clades)} children; expected 2 or 3")

        while stack:
            clade, index = stack.pop()
            if clade.is_terminal():
                continue
            if len(clade.clades) != 2:
                raise TopologyError(f"Inner node with {len(clade.clades)} children; tree must be binary")
            for child in clade.clades:
                ic = tree._clade_node(child)
                tree.connect(index, ic, child.branch_length or 0.0)
                stack.append((child, ic))

        if len(root.clades) == 2 and not (a.is_terminal() or b.is_terminal()):
            tree._reassign_attachments(ia, ib)

        logger.debug("Parsed tree with %d nodes and %d edges", tree.node_count, tree.edge_count)
        return tree

    def _reassign_attachments(self, kept: int, start: int) -> None:
        """Give the nodes below an unrooted root edge distinct attachment edges.

        Both former root children hold the joining edge in slot 0. `kept`
        keeps it; `start` moves an edge towards a child into slot 0, and so
        does every inner node down that path until a tip is reached. A tip
        child is preferred so the path stays short.
        """
        parent, index = kept, start
        while not self.node(index).is_tip:
            node = self.node(index)
            children = [nb for nb in node.neighbors if nb is not None and nb != parent]
            child = next((c for c in children if self.node(c).is_tip), children[0])
            slot = node.slot_of(child)
            for values in (node.neighbors, node.lengths, node.edge_labels):
                values[0], values[slot] = values[slot], values[0]
            parent, index = index, child

    def to_newick(self, include_labels: bool = False) -> str:
        """Write the tree as unrooted Newick, rooted at the first inner node.

        Raises:
            TopologyError: If the tree has no inner node.
        """
        from Bio import Phylo
        from Bio.Phylo.BaseTree import Clade, Tree

        inner = [n for n in self if not n.is_tip and n.degree]
        if not inner:
            raise TopologyError("Tree has no inner node")

        def make_clade(node: TreeNode, length: float | None) -> Clade:
            if node.is_tip:
                return Clade(branch_length=length, name=node.name)
            name = str(node.label) if include_labels and node.label is not None else None
            return Clade(branch_length=length, name=name)

        root = inner[0]
        root_clade = make_clade(root, None)
        stack = [(root, None, root_clade)]
        while stack:
            node, parent, clade = stack.pop()
            for slot, nb in enumerate(node.neighbors):
                if nb is None or nb == parent:
                    continue
                child = self.node(nb)
                child_clade = make_clade(child, node.lengths[slot])
                clade.clades.append(child_clade)
                if not child.is_tip:
                    stack.append((child, node.index, child_clade))

        handle = StringIO()
        Phylo.write(Tree(root=root_clade, rooted=False), handle, "newick", format_branch_length="%1.8f")
        return handle.getvalue().strip()


def _clade_label(clade: Clade) -> int | None:
    """Numeric label of an inner clade; Bio.Phylo parses these as confidence."""
    if clade.name:
        try:
            return int(clade.name)
        except ValueError:
            return None
    if clade.confidence is not None:
        return int(clade.confidence)
    return None
