"""
Core algorithms for stepwise insertion.

Contains the addition-order planner, the two-state gap model, ancestral
vector propagation, the tree topology manager and the log-odds profile
aligner, plus the engine that ties them together.
"""

from stepalign.core.addition_order import AdditionOrder
from stepalign.core.aligner import LogOddsViterbi, ProfileAlignment
from stepalign.core.gap_model import ProbGapModel, gap_model_scope
from stepalign.core.insertion import (
    AncestralReconstruction,
    AncestralReconstructor,
    InsertionResult,
    StepwiseInserter,
)
from stepalign.core.sequences import NamedSequenceSet, Sequence
from stepalign.core.tree import TreeArena

__all__ = [
    "AdditionOrder",
    "AncestralReconstruction",
    "AncestralReconstructor",
    "InsertionResult",
    "LogOddsViterbi",
    "NamedSequenceSet",
    "ProbGapModel",
    "ProfileAlignment",
    "Sequence",
    "StepwiseInserter",
    "TreeArena",
    "gap_model_scope",
]
