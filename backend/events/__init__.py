"""Change-feed transport for the operations tables.

This package carries committed row changes from the outbound writer to the
reconciliation pipeline. It is an async pub/sub built on asyncio.Queue.

Key Components:
    - ChangeType: INSERT / UPDATE / DELETE
    - FeedTable: the two observed tables
    - SubscriptionStatus: values reported to a subscription status callback
    - RowChange: one change notification
    - ChangeFeed: the pub/sub itself

Event Flow:
    1. An agent posts to the log endpoint
    2. OperationsWriter commits the row and publishes a RowChange
    3. LocalFeedSource consumer tasks pull the change off their queues
    4. ReconciliationPipeline maps it and applies it to the state store
"""

from events.bus import ChangeFeed, FeedQueue
from events.types import (
    ChangeType,
    FeedTable,
    RowChange,
    SubscriptionStatus,
)

__all__ = [
    # Message types
    "ChangeType",
    "FeedTable",
    "RowChange",
    "SubscriptionStatus",
    # Feed
    "ChangeFeed",
    "FeedQueue",
]
