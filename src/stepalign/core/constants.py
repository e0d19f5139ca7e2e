"""
Constants used throughout the stepalign package.

Centralizes the nucleotide alphabet, parsimony encodings, alignment
penalties and default values.
"""

from __future__ import annotations

# =============================================================================
# Alphabet
# =============================================================================

# Scoring alphabet; mapped sequences hold indices into this string
DNA_ALPHABET = "ACGT"

GAP_CHAR = "-"

# Background state frequencies used for log-odds scoring (A, C, G, T)
DEFAULT_BACKGROUND_FREQS = (0.25, 0.25, 0.25, 0.25)

# =============================================================================
# Parsimony encoding
# =============================================================================

# One bit per nucleotide; ambiguity codes are unions
PARSIMONY_STATES: dict[str, int] = {
    "A": 0x1,
    "C": 0x2,
    "G": 0x4,
    "T": 0x8,
    "U": 0x8,
    "R": 0x1 | 0x4,
    "Y": 0x2 | 0x8,
    "S": 0x2 | 0x4,
    "W": 0x1 | 0x8,
    "K": 0x4 | 0x8,
    "M": 0x1 | 0x2,
    "B": 0x2 | 0x4 | 0x8,
    "D": 0x1 | 0x4 | 0x8,
    "H": 0x1 | 0x2 | 0x8,
    "V": 0x1 | 0x2 | 0x4,
    "N": 0xF,
    "-": 0xF,
}

PARSIMONY_ALL = 0xF

# Auxiliary gap flags
AUX_CGAP = 0x1
AUX_OPEN = 0x2

# =============================================================================
# Alignment scoring
# =============================================================================

# Pairwise scoring used for the distance matrix and the seed alignment
MATCH_SCORE = 3.0
MISMATCH_SCORE = 0.0
DISTANCE_GAP_OPEN = -5.0
DISTANCE_GAP_EXTEND = -2.0
FREESHIFT_GAP_OPEN = -5.0
FREESHIFT_GAP_EXTEND = -3.0

# Floor for match log-odds so that impossible states never yield -inf
LOG_ODDS_FLOOR = -100.0

# =============================================================================
# Tree construction
# =============================================================================

DEFAULT_BRANCH_LENGTH = 1.0

CLONE_SUFFIX = "_clone"

# Label of the inner edge of the seed quartet
QUARTET_INNER_EDGE = "MOAL"
QUARTET_PENDANT_EDGES = ("I1", "I2", "I3", "I4")

# =============================================================================
# Ancestral state reconstruction
# =============================================================================

RAXML_DEFAULT_MODEL = "GTRGAMMA"
RAXML_DEFAULT_SEED = 12345
RAXML_DEFAULT_RUN_NAME = "stepalign"

TREE_FILE_NAME = "sa_tree"
ALIGNMENT_FILE_NAME = "sa_ali"
