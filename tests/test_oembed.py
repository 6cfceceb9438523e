import requests

from fakes import FakeResponse, html_page
from linkparse.models.parse_result import ContentType, FetchMethod
from linkparse.services import oembed


def test_provider_table_lookup():
    assert oembed.find_provider("https://www.youtube.com/watch?v=abc").name == "YouTube"
    assert oembed.find_provider("https://vimeo.com/123456").name == "Vimeo"
    assert oembed.find_provider("https://x.com/someone/status/1").name == "Twitter"
    assert oembed.find_provider("https://example.com/post") is None


def test_build_request_url():
    assert oembed.build_request_url("https://vimeo.com/api/oembed.json", "https://vimeo.com/1") == (
        "https://vimeo.com/api/oembed.json?url=https%3A%2F%2Fvimeo.com%2F1&format=json"
    )
    discovered = "https://example.com/oembed?url=https%3A%2F%2Fexample.com%2Fa"
    assert oembed.build_request_url(discovered, "https://example.com/a") == discovered


def test_discovery_prefers_json_and_rewrites_xml():
    json_head = (
        '<link rel="alternate" type="text/xml+oembed" href="/oembed?format=xml&url=a">'
        '<link rel="alternate" type="application/json+oembed" href="/oembed?format=json&url=a">'
    )
    xml_head = '<link rel="alternate" type="text/xml+oembed" href="/oembed?format=xml&url=a">'

    assert oembed.discover_endpoint(html_page("", head=json_head), "https://example.com/a") == (
        "https://example.com/oembed?format=json&url=a"
    )
    assert oembed.discover_endpoint(html_page("", head=xml_head), "https://example.com/a") == (
        "https://example.com/oembed?format=json&url=a"
    )
    assert oembed.discover_endpoint("<html></html>") is None


def test_resolve_uses_provider_endpoint(fake_session, fetcher):
    fake_session.add(
        "https://vimeo.com/api/oembed.json",
        FakeResponse(
            json={
                "type": "video",
                "title": "Mountain Timelapse",
                "author_name": "Jane",
                "provider_name": "Vimeo",
                "thumbnail_url": "https://i.vimeocdn.com/thumb.jpg",
                "html": '<iframe src="https://player.vimeo.com/video/1"></iframe><script>x()</script>',
                "duration": 95,
            }
        ),
    )

    result = oembed.resolve("https://vimeo.com/1", fetcher=fetcher)

    assert result.type == ContentType.VIDEO
    assert result.fetch_method == FetchMethod.OEMBED
    assert result.confidence == 0.8
    assert result.title == "Mountain Timelapse"
    assert result.excerpt == "By Jane on Vimeo"
    assert result.cover_image == "https://i.vimeocdn.com/thumb.jpg"
    assert "player.vimeo.com" in result.content_html
    assert "<script" not in result.content_html
    assert result.metadata["duration_seconds"] == "95"
    assert result.metadata["platform"] == "vimeo"


def test_resolve_discovers_endpoint_from_page(fake_session, fetcher):
    head = '<link rel="alternate" type="application/json+oembed" href="https://example.com/oembed?url=a">'
    fake_session.add(
        "https://example.com/oembed",
        FakeResponse(json={"type": "photo", "title": "Sunset", "url": "https://example.com/sunset.jpg"}),
    )

    result = oembed.resolve("https://example.com/photos/sunset", html_page("", head=head), fetcher=fetcher)

    assert result.type == ContentType.SOCIAL
    assert result.cover_image == "https://example.com/sunset.jpg"


def test_resolve_returns_none_when_nothing_answers(fake_session, fetcher):
    fake_session.add("https://vimeo.com/api/oembed.json", requests.ConnectionError("down"))

    assert oembed.resolve("https://vimeo.com/1", fetcher=fetcher) is None
    assert oembed.resolve("https://example.com/plain", "<html></html>", fetcher=fetcher) is None


def test_non_object_payload_is_ignored(fake_session, fetcher):
    fake_session.add("https://vimeo.com/api/oembed.json", FakeResponse(json=["not", "an", "object"]))

    assert oembed.resolve("https://vimeo.com/1", fetcher=fetcher) is None


def test_type_mapping_keeps_provider_hint_for_rich():
    assert oembed.map_type("video", ContentType.ARTICLE) == ContentType.VIDEO
    assert oembed.map_type("rich", ContentType.AUDIO) == ContentType.AUDIO
    assert oembed.map_type(None, ContentType.CODE) == ContentType.CODE
