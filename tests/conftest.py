import pytest

from fakes import FakeSession
from linkparse.config import FetchLimits, RateLimitConfig
from linkparse.extensions import cache
from linkparse.services.fetch import UnifiedFetcher, set_default_fetcher
from linkparse.services.robots import RobotsPolicy
from linkparse.services.strategies import registry as registry_module
from linkparse.utils.rate_limits import SlidingWindowRateLimiter


@pytest.fixture()
def fake_session():
    return FakeSession()


@pytest.fixture()
def fetch_limits():
    return FetchLimits(
        timeout_seconds=5.0,
        max_html_bytes=2 * 1024 * 1024,
        max_file_bytes=10 * 1024 * 1024,
        max_redirects=3,
        oembed_timeout_seconds=3.0,
        robots_timeout_seconds=2.0,
        robots_cache_ttl_seconds=60,
    )


@pytest.fixture()
def rate_config():
    return RateLimitConfig(
        per_client_limit=100,
        per_client_window_seconds=3600,
        per_domain_limit=60,
        per_domain_window_seconds=60,
    )


@pytest.fixture()
def make_fetcher(fetch_limits, rate_config):
    """Build a fetcher over a fake session with in-process rate limits."""

    def _make(session, *, config=None):
        return UnifiedFetcher(
            session,
            rate_limits=SlidingWindowRateLimiter(),
            robots=RobotsPolicy(session, limits=fetch_limits),
            limits=fetch_limits,
            rate_config=config or rate_config,
        )

    return _make


@pytest.fixture()
def fetcher(fake_session, make_fetcher):
    return make_fetcher(fake_session)


@pytest.fixture()
def default_fetcher(fetcher):
    """Install ``fetcher`` as the process-wide default for the duration of a test."""
    set_default_fetcher(fetcher)
    registry_module.reset_registry()
    yield fetcher
    set_default_fetcher(None)
    registry_module.reset_registry()


@pytest.fixture()
def app(monkeypatch):
    from linkparse import create_app

    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("CACHE_TYPE", "SimpleCache")
    monkeypatch.setenv("AUTH_ENABLED", "false")
    monkeypatch.delenv("RATELIMIT_STORAGE_URI", raising=False)
    app = create_app()
    app.config.update(TESTING=True)
    with app.app_context():
        cache.clear()
        yield app


@pytest.fixture()
def client(app):
    return app.test_client()
