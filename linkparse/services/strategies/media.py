"""Video and audio hosts, all served through their public oEmbed endpoints."""

from __future__ import annotations

import os
import re
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import structlog

from linkparse.config import get_settings
from linkparse.models.parse_result import ContentType, ParseResult
from linkparse.services.exceptions import ParserError
from linkparse.services.fetch import FetchResult
from linkparse.services.metadata import MetaTags, collect_meta
from linkparse.services.strategies.base import ApiStrategy, MetaOnlyStrategy, meta_only_result
from linkparse.utils.correlation import propagate_context
from linkparse.utils.text_cleaner import make_excerpt, sanitize_text, sanitize_title, strip_tags
from linkparse.utils.urls import hostname_of

logger = structlog.get_logger(__name__)

YOUTUBE_DATA_API_URL = "https://www.googleapis.com/youtube/v3/videos"
DURATION_LOOKUP_SECONDS = float(os.getenv("YOUTUBE_DURATION_LOOKUP_SECONDS", "5"))

_ISO_DURATION_RE = re.compile(
    r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?)?$", re.IGNORECASE
)
_LENGTH_SECONDS_RE = re.compile(r'"lengthSeconds"\s*:\s*"(\d+)"')
_MUSIC_DURATION_RE = re.compile(r'"duration"\s*:\s*"?(\d+)"?', re.IGNORECASE)


def iso_duration_seconds(value: Optional[str]) -> Optional[int]:
    """``PT1H2M10S`` -> ``3730``; ``None`` for anything unparsable or empty."""
    if not value:
        return None
    match = _ISO_DURATION_RE.match(value.strip())
    if not match or not any(match.groups()):
        return None
    days, hours, minutes, seconds = (float(group or 0) for group in match.groups())
    return int(days * 86400 + hours * 3600 + minutes * 60 + seconds)


def format_iso_duration(seconds: int) -> str:
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    return f"PT{hours}H{minutes}M{secs}S"


def youtube_video_id(url: str) -> Optional[str]:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    segments = [segment for segment in parsed.path.split("/") if segment]
    if host.endswith("youtu.be"):
        return segments[0] if segments else None
    query_id = parse_qs(parsed.query).get("v")
    if query_id:
        return query_id[0]
    if len(segments) >= 2 and segments[0] in ("shorts", "embed", "live", "v"):
        return segments[1]
    return None


class YouTubeStrategy(ApiStrategy):
    name = "YouTube"
    platform = "youtube"
    domain = "youtube.com"
    placeholder_title = "YouTube Video"
    patterns = (r"(youtube\.com|youtu\.be)/.+",)
    oembed_endpoint = "https://www.youtube.com/oembed"
    content_type = ContentType.VIDEO

    def _duration_from_api(self, video_id: str, api_key: str) -> Optional[int]:
        query = urlencode({"id": video_id, "part": "contentDetails", "key": api_key})
        try:
            payload = self.get_json(f"{YOUTUBE_DATA_API_URL}?{query}")
        except ParserError as exc:
            logger.info("youtube.duration_lookup", source="api", status="error", error=str(exc))
            return None
        items = payload.get("items") if isinstance(payload, dict) else None
        if not items:
            return None
        details = items[0].get("contentDetails") or {}
        return iso_duration_seconds(details.get("duration"))

    def _duration_from_page(self, url: str) -> Optional[int]:
        result = self.fetcher.fetch_html(url, check_robots=False)
        if not result.success or not result.html:
            logger.info(
                "youtube.duration_lookup",
                source="page",
                status=result.error_code or "empty",
            )
            return None
        length_match = _LENGTH_SECONDS_RE.search(result.html)
        if length_match:
            return int(length_match.group(1))
        return iso_duration_seconds(collect_meta(result.html).get("duration"))

    def lookup_duration(self, url: str, video_id: Optional[str]) -> tuple[Optional[int], Optional[str]]:
        """Run the Data API and page lookups side by side; the API wins when both answer."""
        api_key = get_settings().YOUTUBE_API_KEY
        pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="youtube-duration")
        try:
            futures = {}
            if api_key and video_id:
                futures["api"] = pool.submit(
                    propagate_context(self._duration_from_api), video_id, api_key
                )
            futures["page"] = pool.submit(propagate_context(self._duration_from_page), url)
            done, _pending = wait(futures.values(), timeout=DURATION_LOOKUP_SECONDS)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        for source in ("api", "page"):
            future = futures.get(source)
            if future is None or future not in done or future.exception() is not None:
                continue
            seconds = future.result()
            if seconds:
                return seconds, source
        return None, None

    def run(
        self, url: str, html: Optional[str], client_identity: Optional[str]
    ) -> ParseResult:
        payload = self.fetch_oembed(url, client_identity)
        video_id = youtube_video_id(url)
        seconds, source = self.lookup_duration(url, video_id)
        author = sanitize_text(payload.get("author_name"))
        metadata: dict[str, Any] = {
            "video_id": video_id,
            "provider_url": payload.get("provider_url"),
            "thumbnail_width": payload.get("thumbnail_width"),
            "thumbnail_height": payload.get("thumbnail_height"),
        }
        if seconds:
            metadata.update(
                duration_seconds=seconds,
                duration_iso=format_iso_duration(seconds),
                duration_source=source,
            )
        return self.oembed_result(
            url,
            payload,
            excerpt=f"Video by {author}" if author else None,
            metadata=metadata,
        )


class TwitterStrategy(ApiStrategy):
    name = "Twitter"
    platform = "twitter"
    placeholder_title = "Post on X"
    patterns = (r"(twitter\.com|x\.com)/.+",)
    oembed_endpoint = "https://publish.twitter.com/oembed"
    oembed_params = {"omit_script": "true"}
    content_type = ContentType.SOCIAL

    def domain_for(self, url: str) -> str:
        host = hostname_of(url)
        return "x.com" if host == "x.com" or host.endswith(".x.com") else "twitter.com"

    def title_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Tweet by {author}" if author else None

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        return make_excerpt(strip_tags(payload.get("html") or ""))

    def metadata_for(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        match = re.search(r"/status(?:es)?/(\d+)", url)
        return {"tweet_id": match.group(1) if match else None}


class SpotifyStrategy(ApiStrategy):
    name = "Spotify"
    platform = "spotify"
    domain = "spotify.com"
    placeholder_title = "Spotify"
    patterns = (r"open\.spotify\.com/",)
    oembed_endpoint = "https://open.spotify.com/oembed"
    content_type = ContentType.AUDIO

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        return "Listen on Spotify"

    def metadata_for(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"spotify_uri": url, "thumbnail_url": payload.get("thumbnail_url")}


class VimeoStrategy(ApiStrategy):
    name = "Vimeo"
    platform = "vimeo"
    domain = "vimeo.com"
    placeholder_title = "Vimeo Video"
    patterns = (r"vimeo\.com/",)
    oembed_endpoint = "https://vimeo.com/api/oembed.json"
    content_type = ContentType.VIDEO

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return sanitize_text(payload.get("description")) or (f"Video by {author}" if author else None)

    def metadata_for(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "video_id": payload.get("video_id"),
            "duration_seconds": payload.get("duration"),
            "width": payload.get("width"),
            "height": payload.get("height"),
        }


class AppleMusicStrategy(MetaOnlyStrategy):
    """Open Graph card plus the embed player URL; the page body is never extracted."""

    name = "Apple Music"
    platform = "apple_music"
    domain = "music.apple.com"
    placeholder_title = "Apple Music"
    patterns = (r"music\.apple\.com/",)
    content_type = ContentType.AUDIO
    confidence = 0.6

    def build(
        self,
        url: str,
        html: str,
        meta: MetaTags,
        fetch_result: Optional[FetchResult],
    ) -> ParseResult:
        embed_url = url.replace("://music.apple.com", "://embed.music.apple.com", 1)
        duration = collect_meta(html).get("music:duration")
        if not duration:
            match = _MUSIC_DURATION_RE.search(html)
            duration = match.group(1) if match else None
        return meta_only_result(
            url,
            sanitize_title(meta.title) or self.placeholder_title,
            meta.description,
            meta.image,
            type=self.content_type,
            metadata=self.base_metadata(embed_url=embed_url, duration_seconds=duration),
            confidence=self.confidence,
            final_url=fetch_result.url if fetch_result else None,
            domain=self.domain,
        )


class TwitchStrategy(ApiStrategy):
    name = "Twitch"
    platform = "twitch"
    domain = "twitch.tv"
    placeholder_title = "Twitch Stream"
    patterns = (r"twitch\.tv/",)
    oembed_endpoint = "https://www.twitch.tv/services/oembed"
    content_type = ContentType.VIDEO

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Watch {author} on Twitch" if author else None


class TikTokStrategy(ApiStrategy):
    name = "TikTok"
    platform = "tiktok"
    domain = "tiktok.com"
    placeholder_title = "TikTok Video"
    patterns = (r"tiktok\.com/.*/video/", r"vm\.tiktok\.com/")
    oembed_endpoint = "https://www.tiktok.com/oembed"
    content_type = ContentType.VIDEO

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        author = sanitize_text(payload.get("author_name"))
        return f"Video by {author}" if author else None

    def metadata_for(self, url: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "video_id": payload.get("embed_product_id"),
            "duration_seconds": payload.get("duration"),
        }


class SoundCloudStrategy(ApiStrategy):
    name = "SoundCloud"
    platform = "soundcloud"
    domain = "soundcloud.com"
    placeholder_title = "SoundCloud Track"
    patterns = (r"soundcloud\.com/",)
    oembed_endpoint = "https://soundcloud.com/oembed"
    content_type = ContentType.AUDIO

    def excerpt_for(self, payload: Mapping[str, Any]) -> Optional[str]:
        description = sanitize_text(payload.get("description"))
        if description:
            return description
        title = sanitize_text(payload.get("title"))
        author = sanitize_text(payload.get("author_name"))
        if title and author:
            return f"Listen to {title} by {author}"
        return None


MEDIA_STRATEGIES = (
    YouTubeStrategy,
    TwitterStrategy,
    SpotifyStrategy,
    VimeoStrategy,
    AppleMusicStrategy,
    TwitchStrategy,
    TikTokStrategy,
    SoundCloudStrategy,
)
