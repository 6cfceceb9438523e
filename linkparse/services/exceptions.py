from __future__ import annotations


class ParserError(Exception):
    """Base class for link parsing errors."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class InvalidURLError(ParserError):
    """The caller supplied something that is not an absolute http(s) URL."""


class FetchFailed(ParserError):
    """A fetch the strategy depended on did not produce a document."""

    def __init__(self, code: str, message: str, *, url: str | None = None) -> None:
        super().__init__(message, url=url)
        self.code = code


class UpstreamAPIError(ParserError):
    """A platform JSON or oEmbed endpoint returned an unusable response."""


class ExtractionFailed(ParserError):
    """HTML was fetched but nothing usable could be extracted from it."""


class DeadlineExceeded(ParserError):
    """The caller's overall deadline elapsed before parsing finished."""


__all__ = [
    "ParserError",
    "InvalidURLError",
    "FetchFailed",
    "UpstreamAPIError",
    "ExtractionFailed",
    "DeadlineExceeded",
]
