"""
stepalign: stepwise insertion of sequences into a growing phylogeny.

Sequences are added one at a time in a greedy distance-based order. Each
candidate is scored against the marginal ancestral profile of every
attachment point of the current tree and inserted where it aligns best,
growing tree and alignment together.
"""

__version__ = "0.1.0"
__author__ = "stepalign developers"

from stepalign.core.insertion import InsertionResult, StepwiseInserter
from stepalign.models.config import StepalignConfig

__all__ = [
    "InsertionResult",
    "StepalignConfig",
    "StepwiseInserter",
    "__version__",
]
