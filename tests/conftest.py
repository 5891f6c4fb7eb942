"""
Shared fixtures for the mentor knowledge graph tests.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Components read configuration on construction; Neo4j requires a password
os.environ.setdefault("NEO4J_PASSWORD", "test-password")

from mentor_config import RuntimeConfig


@pytest.fixture
def runtime_config():
    """Configuration built from the test environment."""
    return RuntimeConfig()


@pytest.fixture
def mock_connection():
    """Connection manager whose query methods are async mocks."""
    connection = MagicMock()
    connection.execute_query_async = AsyncMock(return_value=[])
    connection.execute_write_async = AsyncMock(return_value=[[]])
    return connection
