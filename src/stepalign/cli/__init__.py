"""
CLI commands for stepalign.
"""

__all__ = ["main", "tree"]
