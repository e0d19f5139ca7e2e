"""
Wrappers for external phylogenetics tools.
"""

from stepalign.external.base import (
    ExternalTool,
    ToolExecutionError,
    ToolNotFoundError,
    ToolResult,
    ToolTimeoutError,
)
from stepalign.external.raxml import RAxMLAncestral, parse_marginal_probabilities

__all__ = [
    "ExternalTool",
    "RAxMLAncestral",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolResult",
    "ToolTimeoutError",
    "parse_marginal_probabilities",
]
