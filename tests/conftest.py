import pytest

from core.services import build_services


@pytest.fixture
def services():
    """Services on the in-memory backend."""
    return build_services(development=False)
