"""Feed layer - HackerOne Hacktivity polling."""

from hacktivity_relay.feed.client import FeedFetchError, HacktivityClient
from hacktivity_relay.feed.models import HacktivityItem, MalformedItemError, Severity

__all__ = [
    "FeedFetchError",
    "HacktivityClient",
    "HacktivityItem",
    "MalformedItemError",
    "Severity",
]
