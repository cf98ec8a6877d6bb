import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def _isolate_limits(settings):
    # Rate limit and throttle counters live in the cache; reset them per test
    settings.RATELIMIT_ENABLE = False
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def media_root(settings, tmp_path):
    settings.MEDIA_ROOT = str(tmp_path)
    settings.MEDIA_URL = "/media/"
    return tmp_path
