import pytest
import requests

from linkparse.services.strategies import registry as registry_module
from linkparse.services.strategies.registry import (
    STRATEGY_CLASSES,
    StrategyRegistry,
    build_default_registry,
    select_strategy,
)


@pytest.fixture
def registry(fetcher):
    return build_default_registry(fetcher)


def test_default_strategy_is_last(registry):
    assert len(registry) == len(STRATEGY_CLASSES)
    assert registry.names[-1] == "Default"


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://www.youtube.com/watch?v=abc", "YouTube"),
        ("https://youtu.be/abc", "YouTube"),
        ("https://twitter.com/jack/status/20", "Twitter"),
        ("https://x.com/jack/status/20", "Twitter"),
        ("https://open.spotify.com/track/abc", "Spotify"),
        ("https://music.apple.com/us/album/blue/123", "Apple Music"),
        ("https://www.reddit.com/r/python/comments/abc/title/", "Reddit"),
        ("https://www.instagram.com/p/ABC/", "Instagram"),
        ("https://medium.com/@writer/story", "Medium"),
        ("https://writer.substack.com/p/post", "Substack"),
        ("https://news.ycombinator.com/item?id=1", "Hacker News"),
        ("https://gist.github.com/octocat/abc", "GitHub Gist"),
        ("https://github.com/pallets/flask", "GitHub"),
        ("https://stackoverflow.com/questions/12345/title", "Stack Overflow"),
        ("https://www.notion.so/team/page", "Notion"),
        ("https://trello.com/b/abc/board", "Trello"),
        ("https://acme.atlassian.net/browse/PROJ-1", "Jira"),
        ("https://en.wikipedia.org/wiki/Python", "Wikipedia"),
        ("https://www.amazon.com/dp/B08N5WRWNW", "Amazon"),
        ("https://www.imdb.com/title/tt0111161/", "IMDb"),
        ("https://example.com/blog/post", "Default"),
    ],
)
def test_select_first_match(registry, url, expected):
    assert registry.select(url).name == expected


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/?u=https://github.com/x",
        "https://example.com/share?next=https://www.reddit.com/r/python/",
        "https://example.com/medium.com/story",
        "https://example.com/read#https://medium.com/@writer/story",
        "https://notgithub.com/pallets/flask",
    ],
)
def test_platform_names_outside_the_host_do_not_match(registry, url):
    assert registry.select(url).name == "Default"


def test_gist_wins_over_github(registry):
    names = registry.names

    assert names.index("GitHub Gist") < names.index("GitHub")


def test_registry_requires_a_strategy():
    with pytest.raises(ValueError):
        StrategyRegistry([])


def test_registry_without_catch_all_returns_last(fetcher):
    from linkparse.services.strategies.media import SpotifyStrategy, YouTubeStrategy

    registry = StrategyRegistry([YouTubeStrategy(fetcher), SpotifyStrategy(fetcher)])

    assert registry.select("https://example.com").name == "Spotify"


def test_select_strategy_uses_shared_registry(default_fetcher):
    assert select_strategy("https://vimeo.com/1").name == "Vimeo"
    assert registry_module.get_registry() is registry_module.get_registry()

    registry_module.reset_registry()

    assert registry_module._registry is None


def test_general_pattern_registered_first_shadows_specific(fetcher):
    from linkparse.services.strategies.code import GistStrategy, GitHubStrategy

    misordered = StrategyRegistry([GitHubStrategy(fetcher), GistStrategy(fetcher)])

    assert misordered.select("https://gist.github.com/octocat/abc").name == "GitHub"


class UnreachableSession:
    def __init__(self):
        self.calls = 0

    def get(self, url, **kwargs):
        self.calls += 1
        raise requests.ConnectionError(f"offline: {url}")


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/files/quarterly-report-2024.pdf",
        "https://www.youtube.com/watch?v=abc",
        "https://x.com/jack/status/20",
        "https://www.reddit.com/r/python/comments/abc/title/",
        "https://www.instagram.com/p/ABC/",
        "https://medium.com/@writer/story",
        "https://writer.substack.com/p/post",
        "https://news.ycombinator.com/item?id=1",
        "https://github.com/pallets/flask",
        "https://stackoverflow.com/questions/12345/title",
        "https://www.notion.so/team/page",
        "https://trello.com/b/abc/board",
        "https://en.wikipedia.org/wiki/Python",
        "https://www.amazon.com/dp/B08N5WRWNW",
        "https://www.imdb.com/title/tt0111161/",
        "https://www.pinterest.com/pin/12345/",
    ],
)
def test_every_strategy_degrades_to_webview_when_offline(make_fetcher, url):
    registry = build_default_registry(make_fetcher(UnreachableSession()))

    result = registry.select(url).parse(url)

    assert result.type == "webview"
    assert result.fetch_method == "webview"
    assert result.title
    assert result.content_html is None
    assert 0.0 <= result.confidence <= 1.0
