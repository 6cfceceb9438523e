import requests

from fakes import FakeResponse, FakeSession
from linkparse.services.robots import RobotsPolicy, parse_robots

ROBOTS_URL = "https://example.com/robots.txt"


def _policy(session, fetch_limits):
    return RobotsPolicy(session, limits=fetch_limits)


def _robots(text):
    return FakeResponse(200, text, headers={"Content-Type": "text/plain"})


def test_disallowed_path_is_blocked(fetch_limits):
    session = FakeSession({ROBOTS_URL: _robots("User-agent: *\nDisallow: /private/\n")})
    policy = _policy(session, fetch_limits)

    assert policy.is_allowed("https://example.com/private/doc") is False
    assert policy.is_allowed("https://example.com/public/doc") is True


def test_rules_are_cached_per_host(fetch_limits):
    session = FakeSession({ROBOTS_URL: _robots("User-agent: *\nDisallow: /private/\n")})
    policy = _policy(session, fetch_limits)

    policy.is_allowed("https://example.com/a")
    policy.is_allowed("https://example.com/b")
    policy.is_allowed("https://example.com/c")

    assert session.urls().count(ROBOTS_URL) == 1


def test_missing_robots_allows_everything(fetch_limits):
    policy = _policy(FakeSession(), fetch_limits)

    assert policy.is_allowed("https://example.com/anything") is True


def test_unreachable_robots_fails_open(fetch_limits):
    session = FakeSession({ROBOTS_URL: requests.ConnectionError("refused")})
    policy = _policy(session, fetch_limits)

    assert policy.is_allowed("https://example.com/private/doc") is True


def test_agent_specific_group_applies_to_our_bot(fetch_limits):
    text = (
        "User-agent: ReadabilityBot\n"
        "Disallow: /\n"
        "\n"
        "User-agent: *\n"
        "Allow: /\n"
    )
    policy = _policy(FakeSession({ROBOTS_URL: _robots(text)}), fetch_limits)

    assert policy.is_allowed("https://example.com/page") is False


def test_allow_overrides_broader_disallow():
    parser = parse_robots(
        "User-agent: *\n"
        "Disallow: /docs/\n"
        "Allow: /docs/public/\n"
    )

    assert parser.can_fetch("ReadabilityBot", "https://example.com/docs/public/intro") is True
    assert parser.can_fetch("ReadabilityBot", "https://example.com/docs/internal") is False


def test_clear_forgets_cached_rules(fetch_limits):
    session = FakeSession({ROBOTS_URL: _robots("User-agent: *\nDisallow: /\n")})
    policy = _policy(session, fetch_limits)

    assert policy.is_allowed("https://example.com/") is False
    session.add(ROBOTS_URL, _robots("User-agent: *\nAllow: /\n"))
    assert policy.is_allowed("https://example.com/") is False

    policy.clear()

    assert policy.is_allowed("https://example.com/") is True
