"""
Pytest-BDD specific configuration and fixtures.

This module provides fixtures specific to BDD step definitions.
"""

import pytest


@pytest.fixture
def context():
    """
    Scenario state shared between steps.

    Seeded with the generation inputs that Given steps add to.
    """
    return {"log_sources": [], "actors": [], "rules": {}, "report": None}
