import pytest
from django.core.cache import caches
from django.conf import settings

from modules.core import bulkhead
from modules.core.cache import ResultCache


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture(autouse=True)
def _fresh_cache():
    """Start every test with an empty cache and no bulkheads or in-flight computes."""
    caches[settings.DATA_LAYER["CACHE_ALIAS"]].clear()
    bulkhead._registry.clear()
    ResultCache._in_flight.clear()
    yield
    caches[settings.DATA_LAYER["CACHE_ALIAS"]].clear()


@pytest.fixture()
def result_cache():
    return ResultCache()
