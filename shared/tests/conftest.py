"""
Pytest fixtures for shared module tests.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock


@pytest.fixture
def mock_redis_client():
    """Create a mock Redis client with a registered sliding-window script."""
    client = MagicMock()

    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    client.script = AsyncMock(return_value=[1, 1])
    client.register_script = MagicMock(return_value=client.script)

    return client
