"""
Pydantic configuration models for stepalign.
"""

from stepalign.models.config import (
    AlignmentScoringConfig,
    InsertionConfig,
    RAxMLConfig,
    StepalignConfig,
)

__all__ = [
    "AlignmentScoringConfig",
    "InsertionConfig",
    "RAxMLConfig",
    "StepalignConfig",
]
