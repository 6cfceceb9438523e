import pytest
import requests

from fakes import FakeResponse, article_html, html_page
from linkparse.models.parse_result import ContentType, ErrorCode, Fallback, FetchMethod
from linkparse.services.fetch import BROWSER_USER_AGENT
from linkparse.services.strategies.code import GistStrategy, GitHubStrategy, StackOverflowStrategy
from linkparse.services.strategies.media import (
    AppleMusicStrategy,
    SpotifyStrategy,
    TwitterStrategy,
    YouTubeStrategy,
    iso_duration_seconds,
    youtube_video_id,
)
from linkparse.services.strategies.publishing import (
    HackerNewsStrategy,
    MediumStrategy,
    SubstackStrategy,
)
from linkparse.services.strategies.reference import (
    AmazonStrategy,
    IMDbStrategy,
    PinterestStrategy,
    WikipediaStrategy,
)
from linkparse.services.strategies.social import (
    FacebookStrategy,
    InstagramStrategy,
    LinkedInStrategy,
    RedditStrategy,
    reddit_json_url,
)
from linkparse.services.strategies.workspace import (
    FigmaStrategy,
    JiraStrategy,
    NotionStrategy,
    TrelloStrategy,
)


def _og(**tags):
    return "".join(
        f'<meta property="og:{name}" content="{value}">' for name, value in tags.items()
    )


# -- media -----------------------------------------------------------------


def test_youtube_video_id_forms():
    assert youtube_video_id("https://www.youtube.com/watch?v=abc123&t=5") == "abc123"
    assert youtube_video_id("https://youtu.be/xyz789") == "xyz789"
    assert youtube_video_id("https://www.youtube.com/shorts/short1") == "short1"
    assert youtube_video_id("https://www.youtube.com/channel/UC123") is None


def test_iso_duration_parsing():
    assert iso_duration_seconds("PT1H2M10S") == 3730
    assert iso_duration_seconds("PT45S") == 45
    assert iso_duration_seconds("P1D") == 86400
    assert iso_duration_seconds("PT") is None
    assert iso_duration_seconds("garbage") is None


def test_youtube_oembed_with_duration_from_page(fake_session, fetcher, monkeypatch):
    monkeypatch.delenv("YOUTUBE_API_KEY", raising=False)
    url = "https://www.youtube.com/watch?v=abc123"
    fake_session.add(
        "https://www.youtube.com/oembed",
        FakeResponse(
            json={
                "title": "Building a Parser",
                "author_name": "Code Channel",
                "thumbnail_url": "https://i.ytimg.com/vi/abc123/hqdefault.jpg",
                "html": '<iframe src="https://www.youtube.com/embed/abc123"></iframe>',
            }
        ),
    )
    fake_session.add(url, FakeResponse(200, html_page('<script>var d = {"lengthSeconds":"212"};</script>')))

    result = YouTubeStrategy(fetcher).parse(url)

    assert result.type == ContentType.VIDEO
    assert result.fetch_method == FetchMethod.OEMBED
    assert result.title == "Building a Parser"
    assert result.excerpt == "Video by Code Channel"
    assert result.domain == "youtube.com"
    assert result.metadata["video_id"] == "abc123"
    assert result.metadata["duration_seconds"] == "212"
    assert result.metadata["duration_iso"] == "PT0H3M32S"
    assert result.metadata["duration_source"] == "page"
    assert "youtube.com/embed/abc123" in result.content_html


def test_youtube_data_api_wins_over_page(fake_session, fetcher, monkeypatch):
    monkeypatch.setenv("YOUTUBE_API_KEY", "test-key")
    url = "https://youtu.be/abc123"
    fake_session.add(
        "https://www.youtube.com/oembed", FakeResponse(json={"title": "Clip", "author_name": "A"})
    )
    fake_session.add(
        "https://www.googleapis.com/youtube/v3/videos",
        FakeResponse(json={"items": [{"contentDetails": {"duration": "PT1M5S"}}]}),
    )
    fake_session.add(url, FakeResponse(200, html_page('{"lengthSeconds":"64"}')))

    result = YouTubeStrategy(fetcher).parse(url)

    assert result.metadata["duration_seconds"] == "65"
    assert result.metadata["duration_source"] == "api"


def test_youtube_oembed_failure_is_typed_placeholder(fake_session, fetcher):
    fake_session.add("https://www.youtube.com/oembed", requests.ConnectionError("down"))

    result = YouTubeStrategy(fetcher).parse("https://www.youtube.com/watch?v=abc123")

    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.title == "YouTube Video"
    assert result.domain == "youtube.com"
    assert result.confidence == 0.3
    assert result.error.code == ErrorCode.NETWORK_ERROR
    assert result.error.fallback == Fallback.RETRY
    assert result.metadata["platform"] == "youtube"


def test_twitter_post_on_x(fake_session, fetcher):
    fake_session.add(
        "https://publish.twitter.com/oembed",
        FakeResponse(
            json={
                "author_name": "jack",
                "html": "<blockquote><p>just setting up my twttr</p></blockquote>",
            }
        ),
    )

    result = TwitterStrategy(fetcher).parse("https://x.com/jack/status/20")

    assert result.title == "Tweet by jack"
    assert result.excerpt == "just setting up my twttr"
    assert result.domain == "x.com"
    assert result.type == ContentType.SOCIAL
    assert result.metadata["tweet_id"] == "20"


def test_apple_music_is_meta_only_with_embed_url(fetcher):
    html = html_page(
        "",
        head=_og(title="Blue", description="Album by Joni", image="https://is1.mzstatic.com/blue.jpg")
        + '<meta property="music:duration" content="2150">',
    )

    result = AppleMusicStrategy(fetcher).parse("https://music.apple.com/us/album/blue/123", html=html)

    assert result.type == ContentType.AUDIO
    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.content_html is None
    assert result.title == "Blue"
    assert result.metadata["embed_url"] == "https://embed.music.apple.com/us/album/blue/123"
    assert result.metadata["duration_seconds"] == "2150"
    assert result.confidence == 0.6


@pytest.mark.parametrize(
    "strategy_cls, url, endpoint, expected_type, expected_excerpt",
    [
        (
            SpotifyStrategy,
            "https://open.spotify.com/track/abc",
            "https://open.spotify.com/oembed",
            ContentType.AUDIO,
            "Listen on Spotify",
        ),
        (
            FigmaStrategy,
            "https://www.figma.com/file/abc/Design",
            "https://www.figma.com/api/oembed",
            ContentType.IMAGE,
            "Design by Ana",
        ),
        (
            PinterestStrategy,
            "https://www.pinterest.com/pin/12345/",
            "https://www.pinterest.com/oembed.json",
            ContentType.IMAGE,
            "Pin by Ana",
        ),
        (
            LinkedInStrategy,
            "https://www.linkedin.com/posts/ana_activity-1",
            "https://www.linkedin.com/oembed",
            ContentType.ARTICLE,
            "Post by Ana",
        ),
    ],
)
def test_oembed_platforms(fake_session, fetcher, strategy_cls, url, endpoint, expected_type, expected_excerpt):
    fake_session.add(endpoint, FakeResponse(json={"title": "Thing", "author_name": "Ana"}))

    result = strategy_cls(fetcher).parse(url)

    assert result.type == expected_type
    assert result.excerpt == expected_excerpt
    assert result.title == "Thing"
    assert result.fetch_method == FetchMethod.OEMBED
    assert result.confidence == 0.8


# -- social ----------------------------------------------------------------


def test_reddit_json_url():
    assert reddit_json_url("https://www.reddit.com/r/python/comments/abc/title/") == (
        "https://old.reddit.com/r/python/comments/abc/title.json"
    )
    assert reddit_json_url("https://redd.it/abc") == "https://old.reddit.com/comments/abc.json"


def test_reddit_self_post(fake_session, fetcher):
    json_url = "https://old.reddit.com/r/python/comments/abc/title.json"
    fake_session.add(
        json_url,
        FakeResponse(
            json=[
                {
                    "data": {
                        "children": [
                            {
                                "data": {
                                    "title": "Parsing links in Python",
                                    "selftext": "Body text here",
                                    "selftext_html": "&lt;p&gt;Body text here&lt;/p&gt;",
                                    "author": "spez",
                                    "subreddit": "python",
                                    "ups": 42,
                                    "num_comments": 7,
                                    "url": "https://www.reddit.com/r/python/comments/abc/title/",
                                    "permalink": "/r/python/comments/abc/title/",
                                    "thumbnail": "self",
                                }
                            }
                        ]
                    }
                }
            ]
        ),
    )

    result = RedditStrategy(fetcher).parse("https://www.reddit.com/r/python/comments/abc/title/")

    assert result.title == "Parsing links in Python"
    assert "<p>Body text here</p>" in result.content_html
    assert result.excerpt == "Body text here"
    assert result.cover_image is None
    assert result.fetch_method == FetchMethod.API
    assert result.metadata["upvotes"] == "42"
    assert result.metadata["subreddit"] == "python"
    assert fake_session.headers_for(json_url)["User-Agent"] == BROWSER_USER_AGENT


def test_reddit_unexpected_payload_falls_back(fake_session, fetcher):
    fake_session.add(
        "https://old.reddit.com/r/python/comments/abc/title.json", FakeResponse(json={"kind": "x"})
    )

    result = RedditStrategy(fetcher).parse("https://www.reddit.com/r/python/comments/abc/title/")

    assert result.title == "Reddit Post"
    assert result.domain == "reddit.com"
    assert result.error.code == ErrorCode.PARSE_FAILED


def test_instagram_scrape(fetcher):
    html = html_page(
        "",
        head=_og(
            title='Jane Doe (@jane) on Instagram: &quot;Sunset at the pier&quot;',
            image="https://cdn.instagram.com/p.jpg",
        ),
    )

    result = InstagramStrategy(fetcher).parse("https://www.instagram.com/p/ABC123/", html=html)

    assert result.title == "Jane Doe (@jane)"
    assert result.excerpt == "Sunset at the pier"
    assert result.type == ContentType.IMAGE
    assert result.content_html is None
    assert result.metadata["embed_url"] == "https://www.instagram.com/p/ABC123/embed"
    assert result.metadata["author_username"] == "jane"


def test_instagram_without_post_id(fetcher):
    result = InstagramStrategy(fetcher).parse("https://www.instagram.com/jane/")

    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.title == "Instagram Post"
    assert result.error.code == ErrorCode.PARSE_FAILED


def test_facebook_blocked_scrape_is_protected_placeholder(fake_session, fetcher):
    result = FacebookStrategy(fetcher).parse("https://www.facebook.com/somepage/posts/1")

    assert result.protected is True
    assert result.title == "Facebook Post"
    assert result.fetch_method == FetchMethod.WEBVIEW
    assert fake_session.headers_for("https://www.facebook.com/somepage/posts/1")["User-Agent"] == (
        BROWSER_USER_AGENT
    )


def test_facebook_video_card(fetcher):
    html = html_page("", head=_og(title="Match highlights", type="video.other"))

    result = FacebookStrategy(fetcher).parse("https://www.facebook.com/watch/?v=1", html=html)

    assert result.type == ContentType.VIDEO
    assert result.metadata["og_type"] == "video.other"


# -- publishing ------------------------------------------------------------


def test_medium_member_story_is_paywalled(fake_session, fetcher):
    url = "https://medium.com/@writer/the-story-1a2b3c"
    fake_session.add(
        url,
        FakeResponse(
            200,
            html_page(
                '<div class="meteredContent"><p>Member-only story</p><p>Short teaser.</p></div>',
                head=_og(title="The Story", description="A teaser"),
            ),
        ),
    )

    result = MediumStrategy(fetcher).parse(url)

    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.paywalled is True
    assert result.error.code == ErrorCode.PAYWALL
    assert result.error.message == "This article is for Medium members only"
    assert result.title == "The Story"
    assert result.domain == "medium.com"
    assert fake_session.headers_for(url)["User-Agent"] == BROWSER_USER_AGENT


def test_medium_paywall_still_estimates_reading_time(fetcher):
    html = article_html(
        2400,
        extra='<div class="meteredContent"><p>Member-only story</p></div>',
    )

    result = MediumStrategy(fetcher).parse("https://medium.com/@writer/long-story", html=html)

    assert result.paywalled is True
    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.reading_time_minutes >= 1


def test_medium_free_story_is_extracted(fetcher):
    result = MediumStrategy(fetcher).parse(
        "https://medium.com/@writer/free-story", html=article_html(2000)
    )

    assert result.type == ContentType.ARTICLE
    assert result.fetch_method == FetchMethod.READABILITY
    assert result.content_html
    assert result.paywalled is False


def test_substack_free_post_stays_meta_only(fetcher):
    html = article_html(2000, head='<meta property="og:site_name" content="Field Notes">')

    result = SubstackStrategy(fetcher).parse("https://writer.substack.com/p/free-post", html=html)

    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.type == ContentType.ARTICLE
    assert result.paywalled is False
    assert result.metadata["author"] == "Field Notes"
    assert result.confidence == 0.6
    assert result.domain == "writer.substack.com"


def test_hacker_news_story(fake_session, fetcher):
    fake_session.add(
        "https://hacker-news.firebaseio.com/v0/item/8863.json",
        FakeResponse(
            json={
                "by": "dhouston",
                "descendants": 71,
                "score": 111,
                "title": "My YC app: Dropbox",
                "url": "http://www.getdropbox.com/u/2/screencast.html",
            }
        ),
    )

    result = HackerNewsStrategy(fetcher).parse("https://news.ycombinator.com/item?id=8863")

    assert result.title == "My YC app: Dropbox"
    assert result.excerpt == "Hacker News discussion with 71 comments"
    assert "getdropbox.com" in result.content_html
    assert result.metadata["author"] == "dhouston"
    assert result.metadata["story_url"] == "http://www.getdropbox.com/u/2/screencast.html"


def test_hacker_news_deleted_item(fake_session, fetcher):
    fake_session.add(
        "https://hacker-news.firebaseio.com/v0/item/1.json", FakeResponse(json={"deleted": True})
    )

    result = HackerNewsStrategy(fetcher).parse("https://news.ycombinator.com/item?id=1")

    assert result.title == "Hacker News Discussion"
    assert result.error.code == ErrorCode.PARSE_FAILED


# -- code ------------------------------------------------------------------


def test_gist_oembed(fake_session, fetcher):
    fake_session.add(
        "https://gist.github.com/oembed",
        FakeResponse(json={"title": "hello.py", "author_name": "octocat", "html": "<pre>print(1)</pre>"}),
    )

    result = GistStrategy(fetcher).parse("https://gist.github.com/octocat/abc123")

    assert result.type == ContentType.CODE
    assert result.title == "hello.py"
    assert result.excerpt == "Gist by octocat"


def test_github_repository(fake_session, fetcher):
    fake_session.add(
        "https://api.github.com/repos/pallets/flask",
        FakeResponse(
            json={
                "full_name": "pallets/flask",
                "description": "The Python micro framework",
                "stargazers_count": 65000,
                "forks_count": 16000,
                "language": "Python",
                "open_issues_count": 5,
                "license": {"spdx_id": "BSD-3-Clause"},
                "owner": {"avatar_url": "https://avatars.githubusercontent.com/u/1"},
                "html_url": "https://github.com/pallets/flask",
            }
        ),
    )

    result = GitHubStrategy(fetcher).parse("https://github.com/pallets/flask")

    assert result.type == ContentType.CODE
    assert result.title == "pallets/flask"
    assert result.excerpt == "The Python micro framework"
    assert "Stars: 65000" in result.content_html
    assert result.cover_image == "https://avatars.githubusercontent.com/u/1"
    assert result.metadata["license"] == "BSD-3-Clause"
    assert result.metadata["stars"] == "65000"


@pytest.mark.parametrize(
    "url",
    [
        "https://github.com/pallets/flask/issues/1",
        "https://github.com/pallets/flask/pull/2",
        "https://github.com/trending/python",
        "https://github.com/pallets",
    ],
)
def test_github_non_repository_pages_are_webviews(fake_session, fetcher, url):
    result = GitHubStrategy(fetcher).parse(url)

    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.excerpt == "View on GitHub"
    assert fake_session.calls == []


def test_stack_overflow_question(fake_session, fetcher):
    fake_session.add(
        "https://api.stackexchange.com/2.3/questions/12345",
        FakeResponse(
            json={
                "items": [
                    {
                        "title": "How do I parse a URL?",
                        "body": "<p>I need to split a URL.</p><script>x()</script>",
                        "owner": {"display_name": "sam", "profile_image": "https://x/sam.png"},
                        "score": 12,
                        "tags": ["python", "url"],
                        "is_answered": True,
                        "answer_count": 3,
                    }
                ]
            }
        ),
    )

    result = StackOverflowStrategy(fetcher).parse("https://stackoverflow.com/questions/12345/how-do-i")

    assert result.title == "How do I parse a URL?"
    assert result.excerpt == "Stack Overflow question by sam"
    assert "<script" not in result.content_html
    assert result.metadata["tags"] == "python,url"
    assert result.metadata["is_answered"] == "true"


# -- workspace -------------------------------------------------------------


def test_notion_is_always_protected(fetcher):
    html = html_page("", head=_og(title="Roadmap", description="Team plans"))

    result = NotionStrategy(fetcher).parse("https://www.notion.so/team/Roadmap-abc", html=html)

    assert result.protected is True
    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.title == "Roadmap"
    assert result.error.code == ErrorCode.PROTECTED
    assert result.confidence == 0.5


def test_notion_fetch_failure(fetcher):
    result = NotionStrategy(fetcher).parse("https://acme.notion.site/Private-abc")

    assert result.protected is True
    assert result.title == "Notion Page"
    assert result.error.message == "This Notion page requires authentication"
    assert result.domain == "notion.so"


def test_trello_public_board(fake_session, fetcher):
    fake_session.add(
        "https://trello.com/b/AbCd1234/roadmap.json",
        FakeResponse(
            json={
                "id": "b1",
                "name": "Roadmap",
                "desc": "Quarter plans",
                "prefs": {"backgroundImage": "https://trello.com/bg.jpg"},
            }
        ),
    )

    result = TrelloStrategy(fetcher).parse("https://trello.com/b/AbCd1234/roadmap?filter=all")

    assert result.title == "Roadmap"
    assert result.excerpt == "Quarter plans"
    assert result.cover_image == "https://trello.com/bg.jpg"
    assert result.type == ContentType.WEBVIEW
    assert result.fetch_method == FetchMethod.API
    assert result.metadata["id"] == "b1"


def test_trello_private_board(fetcher):
    result = TrelloStrategy(fetcher).parse("https://trello.com/c/Secret1/card")

    assert result.protected is True
    assert result.error.code == ErrorCode.PROTECTED
    assert result.title == "Trello Board/Card"


def test_jira_never_fetches(fake_session, fetcher):
    result = JiraStrategy(fetcher).parse("https://acme.atlassian.net/browse/PROJ-123")

    assert result.title == "PROJ-123"
    assert result.protected is True
    assert result.error.code == ErrorCode.LOGIN_REQUIRED
    assert result.domain == "acme.atlassian.net"
    assert result.confidence == 0.3
    assert fake_session.calls == []


# -- reference -------------------------------------------------------------


def test_wikipedia_summary_in_page_language(fake_session, fetcher):
    fake_session.add(
        "https://de.wikipedia.org/api/rest_v1/page/summary/Berlin",
        FakeResponse(
            json={
                "title": "Berlin",
                "extract": "Berlin ist die Hauptstadt Deutschlands.",
                "pageid": 3354,
                "description": "Hauptstadt",
                "thumbnail": {"source": "https://upload.wikimedia.org/berlin.jpg"},
            }
        ),
    )

    result = WikipediaStrategy(fetcher).parse("https://de.wikipedia.org/wiki/Berlin")

    assert result.title == "Berlin"
    assert result.domain == "de.wikipedia.org"
    assert result.excerpt == "Berlin ist die Hauptstadt Deutschlands."
    assert result.metadata["page_id"] == "3354"
    assert result.cover_image == "https://upload.wikimedia.org/berlin.jpg"
    assert result.confidence == 0.9


def test_amazon_product_card(fetcher):
    html = html_page("", head=_og(title="Kindle Paperwhite", image="https://m.media-amazon.com/k.jpg"))

    result = AmazonStrategy(fetcher).parse(
        "https://www.amazon.com/Kindle-Paperwhite/dp/B08N5WRWNW", html=html
    )

    assert result.type == ContentType.PRODUCT
    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.title == "Kindle Paperwhite"
    assert result.metadata["asin"] == "B08N5WRWNW"
    assert result.confidence == 0.6


def test_amazon_blocked_request(fetcher):
    result = AmazonStrategy(fetcher).parse("https://www.amazon.com/dp/B08N5WRWNW")

    assert result.fetch_method == FetchMethod.WEBVIEW
    assert result.error.code == ErrorCode.PARSE_FAILED
    assert result.error.message == "Amazon blocked the request"
    assert result.domain == "amazon.com"


def test_imdb_is_meta_only_video(fetcher):
    html = html_page(
        "<p>Plot summary and a very long cast list.</p>",
        head=_og(title="The Shawshank Redemption (1994)"),
    )

    result = IMDbStrategy(fetcher).parse("https://www.imdb.com/title/tt0111161/", html=html)

    assert result.type == ContentType.VIDEO
    assert result.fetch_method == FetchMethod.META_ONLY
    assert result.content_html is None
    assert result.title == "The Shawshank Redemption (1994)"
