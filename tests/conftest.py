import os
import sys

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from restyle.config import get_settings
from restyle.dependencies.services import get_supabase_client_cached
from restyle.services.mock_store import reset_mock_store


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    get_settings.cache_clear()
    get_supabase_client_cached.cache_clear()
    reset_mock_store()
    yield
    reset_mock_store()
