"""Reconciliation of the remote operations tables into the state store.

Key Components:
    - mapper: remote rows to domain records
    - ChangeFeedSource / LocalFeedSource: snapshot queries and live subscription
    - ReconciliationPipeline: snapshot then subscribe, once per instance
    - OperationsWriter: outbound event append and session upsert
"""

from reconcile.pipeline import ReconciliationPipeline
from reconcile.source import (
    ChangeFeedSource,
    ChangeHandler,
    FeedSubscription,
    LocalFeedSource,
    LocalFeedSubscription,
    StatusHandler,
)
from reconcile.writer import OperationsWriter, WriteResult

__all__ = [
    "ChangeFeedSource",
    "ChangeHandler",
    "FeedSubscription",
    "LocalFeedSource",
    "LocalFeedSubscription",
    "OperationsWriter",
    "ReconciliationPipeline",
    "StatusHandler",
    "WriteResult",
]
