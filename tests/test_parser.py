import threading

import pytest

from fakes import article_html
from linkparse.models.parse_result import ErrorCode, Fallback, FetchMethod
from linkparse.services.exceptions import InvalidURLError
from linkparse.services.parser import parse_url
from linkparse.services.strategies.base import Strategy, webview_fallback
from linkparse.services.strategies.registry import StrategyRegistry, build_default_registry
from linkparse.utils.deadline import remaining_seconds


class SlowStrategy(Strategy):
    name = "Slow"

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def matches(self, url):
        return True

    def run(self, url, html, client_identity):
        self.release.wait(5)
        return webview_fallback(url, "Too late")


class RecordingStrategy(Strategy):
    name = "Recording"

    def __init__(self):
        super().__init__()
        self.seen = []

    def matches(self, url):
        return True

    def run(self, url, html, client_identity):
        self.seen.append((url, html, client_identity, remaining_seconds()))
        return webview_fallback(url, "Recorded")


@pytest.mark.parametrize(
    "url", [None, "", "   ", "not a url", "ftp://example.com/file", "https://", "mailto:a@b.c"]
)
def test_invalid_urls_raise(url):
    with pytest.raises(InvalidURLError):
        parse_url(url, registry=StrategyRegistry([RecordingStrategy()]))


def test_arguments_reach_the_strategy_under_a_deadline():
    strategy = RecordingStrategy()

    result = parse_url(
        "  https://example.com/post  ",
        "<html></html>",
        client_identity="client-1",
        deadline_seconds=10,
        registry=StrategyRegistry([strategy]),
    )

    assert result.title == "Recorded"
    ((url, html, client_identity, remaining),) = strategy.seen
    assert url == "https://example.com/post"
    assert html == "<html></html>"
    assert client_identity == "client-1"
    assert 0 < remaining <= 10


def test_deadline_returns_opaque_timeout():
    strategy = SlowStrategy()
    try:
        result = parse_url(
            "https://example.com/reports/slow-page",
            deadline_seconds=0.05,
            registry=StrategyRegistry([strategy]),
        )
    finally:
        strategy.release.set()

    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.title == "Slow Page"
    assert result.confidence == 0.2
    assert result.error.code == ErrorCode.TIMEOUT
    assert result.error.fallback == Fallback.RETRY


def test_full_pipeline_with_supplied_html(fake_session, fetcher):
    result = parse_url(
        "https://example.com/history/valley",
        article_html(2000),
        registry=build_default_registry(fetcher),
    )

    assert result.fetch_method == FetchMethod.READABILITY
    assert result.content_html
    assert fake_session.calls == []
