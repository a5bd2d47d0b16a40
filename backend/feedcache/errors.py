"""Error taxonomy shared by the feed store, manager and scheduler."""

from __future__ import annotations

from typing import Optional


class FeedError(Exception):
    """Base class for feed cache failures."""


class UpstreamGenerationFailure(FeedError):
    """The content generation service failed to produce an item."""

    def __init__(self, message: str, *, category: Optional[str] = None) -> None:
        super().__init__(message)
        self.category = category


class FeedExhausted(FeedError):
    """No deliverable content is left in the user's feed.

    Callers on the request path are expected to fall back to on-demand
    generation rather than surface this to the user.
    """

    def __init__(self, user_id: str, feed_type: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Feed '{feed_type}' for user '{user_id}' is exhausted.")
        self.user_id = user_id
        self.feed_type = feed_type


class NoValidContent(FeedExhausted):
    """Every queued id was a dangling reference."""


class StoreUnavailable(FeedError):
    """The feed store could not be read or written; the operation was rolled back."""


class UnsupportedFeedType(FeedError):
    """The requested feed type is not one the cache builds."""

    def __init__(self, feed_type: str) -> None:
        super().__init__(f"Unsupported feed type '{feed_type}'.")
        self.feed_type = feed_type


__all__ = [
    "FeedError",
    "FeedExhausted",
    "NoValidContent",
    "StoreUnavailable",
    "UnsupportedFeedType",
    "UpstreamGenerationFailure",
]
