"""Live feed module."""

from .dispatcher import FeedItem, ILiveFeedDispatcher, LiveFeedDispatcher, Subscription

__all__ = ["LiveFeedDispatcher", "ILiveFeedDispatcher", "Subscription", "FeedItem"]
