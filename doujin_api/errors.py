"""Error taxonomy shared by the pipeline, the CLI and the HTTP layer."""

from __future__ import annotations


class DoujinApiError(RuntimeError):
    """Base class for every pipeline failure."""


class SourceUnavailableError(DoujinApiError):
    """Transport or service failure reaching the source site or Telegraph. Retryable."""


class NotFoundError(DoujinApiError):
    """No content at the given URL or identifier."""


class NoMatchError(NotFoundError):
    """A tag filter matched nothing on the source site."""

    def __init__(self, query: str) -> None:
        self.query = query
        super().__init__(f"No gallery matches the tag filter: {query!r}")


class ParseError(DoujinApiError):
    """The source page structure was not recognized."""


class PublishError(DoujinApiError):
    """Telegraph rejected or failed a request."""


class ArchiveError(DoujinApiError):
    """An image download or the compression step failed."""


class StatsUpdateError(DoujinApiError):
    """The stats store could not be read or written. Never fatal to the caller."""
