"""Feed module: provider access and normalized per-period snapshots."""

from ffa.feed.adapter import FeedAdapter
from ffa.feed.base import FeedProvider, FeedSnapshot, FeedUnavailable
from ffa.feed.draft_api import DraftAPIProvider

__all__ = [
    "FeedProvider",
    "FeedSnapshot",
    "FeedUnavailable",
    "FeedAdapter",
    "DraftAPIProvider",
]
