import pytest
from unittest.mock import patch


@pytest.fixture(autouse=True)
def no_sleep():
    """Retry backoff and rate limiters sleep; tests don't need to."""
    with patch("time.sleep") as mock_sleep:
        yield mock_sleep
