"""Session-scoped repositories over the feed cache tables."""

from .content import ContentItemRepository
from .feeds import FeedEntryRepository
from .profiles import BehaviorProfileRepository
from .users import UserActivityRepository

__all__ = [
    "BehaviorProfileRepository",
    "ContentItemRepository",
    "FeedEntryRepository",
    "UserActivityRepository",
]
