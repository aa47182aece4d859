import pytest

from auth.credentials import TokenManager
from tests.graph_helpers import RefreshRecorder, build_manager


@pytest.fixture
def refresh() -> RefreshRecorder:
    return RefreshRecorder()


@pytest.fixture
def manager(refresh: RefreshRecorder) -> TokenManager:
    return build_manager(refresh_fn=refresh)
