"""
Unit Test Configuration (Tier 1)

Unit tests use the fake control plane and FakeClock only:
- no ``ubi`` binary
- no PostgreSQL connections
- no real sleeps
"""

import pytest


@pytest.fixture
def primary_ref():
    from pglifecycle.core.resource import ResourceRef

    return ResourceRef("eu-central-h1", "test-pg-1")
