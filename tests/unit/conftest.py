"""
Shared fixtures for unit tests.

This module provides common fixtures used across multiple test modules:
- Registry state machine of the local chain
"""

import pytest


@pytest.fixture
def registry(local_chain):
    """
    Registry driven directly, with the local chain as its bank.

    Returns:
        TrustInvoiceRegistry: Registry owned by the `owner` fixture
    """
    return local_chain.registry
