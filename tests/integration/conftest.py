"""Shared conftest for integration tests."""

from __future__ import annotations

import pytest

from stepalign.external.raxml import RAxMLAncestral


def pytest_collection_modifyitems(config, items):
    """Skip tests marked requires_raxml if raxmlHPC is not available."""
    if not RAxMLAncestral.check_available():
        skip_raxml = pytest.mark.skip(reason="raxmlHPC not installed")
        for item in items:
            if "requires_raxml" in item.keywords:
                item.add_marker(skip_raxml)
