"""
Custom exceptions with actionable guidance.

Every fatal condition of the insertion engine has its own error type. All of
them derive from StepalignError and carry an optional suggestion that the CLI
prints below the message.
"""

from __future__ import annotations


class StepalignError(Exception):
    """Base exception for stepalign errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class SequenceSetError(StepalignError):
    """Base class for sequence set errors."""



class EmptySequenceSetError(SequenceSetError):
    """Raised when the input holds too few usable sequences."""

    def __init__(self, source: str, count: int):
        super().__init__(
            message=f"Need at least 2 usable sequences in {source}, got {count}",
            suggestion=(
                "Check that the input is FASTA and that the sequences contain "
                "nucleotide characters (A, C, G, T)."
            ),
        )
        self.count = count


class SequenceNameNotFoundError(SequenceSetError):
    """Raised when a name lookup cannot be resolved."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Sequence name not found: {name}",
            suggestion=(
                "Tip names in the reconstructed tree must match the FASTA "
                "headers. Avoid whitespace and special characters in names."
            ),
        )
        self.name = name


class StaleNameIndexError(SequenceSetError):
    """Raised when the name index is queried before it was re-sorted."""

    def __init__(self) -> None:
        super().__init__(
            message="Name index queried after bulk insertion without re-sorting",
            suggestion="Call NamedSequenceSet.sort_index() after add_fast().",
        )


class PlannerNotInitializedError(StepalignError):
    """Raised when the addition order is queried before initialize()."""

    def __init__(self) -> None:
        super().__init__(
            message="next_candidate called with an empty distance matrix",
            suggestion="Call AdditionOrder.initialize() with the pairwise score matrix first.",
        )


class GapModelError(StepalignError):
    """Raised when the probabilistic gap model cannot be constructed."""

    def __init__(self, reason: str, gap_freq: float | None = None):
        detail = f" (gap frequency {gap_freq})" if gap_freq is not None else ""
        super().__init__(
            message=f"Cannot build probabilistic gap model{detail}: {reason}",
            suggestion="The realised gap frequency must be a finite value in [0, 1].",
        )
        self.gap_freq = gap_freq


class MissingGapModelError(StepalignError):
    """Raised when a probabilistic newview runs without an active gap model."""

    def __init__(self) -> None:
        super().__init__(
            message="Probabilistic newview requested but no gap model is active",
            suggestion=(
                "Pass the model explicitly or wrap the computation in "
                "gap_model_scope(model)."
            ),
        )


class NewviewLengthMismatchError(StepalignError):
    """Raised when the two child vectors of a newview differ in length."""

    def __init__(self, len1: int, len2: int):
        super().__init__(
            message=(
                f"newview: vectors have different lengths ({len1} vs {len2}); "
                "illegal incremental newview on modified data?"
            ),
        )
        self.len1 = len1
        self.len2 = len2


class TopologyError(StepalignError):
    """Raised for illegal tree edits or traversals."""



class AncestralStateFormatError(StepalignError):
    """Raised when ancestral state reconstruction output cannot be used."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Unusable ancestral state output '{path}': {reason}",
            suggestion=(
                "Check that the reconstruction tool finished successfully and "
                "was run on the same alignment."
            ),
        )
        self.path = path
