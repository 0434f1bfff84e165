"""Change-feed message definitions.

A change feed delivers one RowChange per committed insert, update or delete
on a watched table, plus subscription status transitions. Rows travel as raw
dicts; validation happens in the domain mapper so a malformed row can be
skipped without poisoning the feed.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ChangeType(StrEnum):
    """Kind of committed row change."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class FeedTable(StrEnum):
    """Tables observed by the reconciliation pipeline."""

    AGENT_SESSIONS = "agent_sessions"
    OPERATIONS_EVENTS = "operations_events"


class SubscriptionStatus(StrEnum):
    """Status values reported to a subscription's status callback."""

    SUBSCRIBED = "subscribed"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class RowChange(BaseModel):
    """A single change notification.

    Attributes:
        table: Which table the change happened on.
        event_type: INSERT, UPDATE or DELETE.
        new: The row after the change (None for most deletes).
        old: The row before the change, when the transport provides it.
        committed_at: Unix timestamp when the change was published.
    """

    table: FeedTable
    event_type: ChangeType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: float = Field(default_factory=time.time)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "table": "agent_sessions",
                    "event_type": "UPDATE",
                    "new": {
                        "agent_id": "agent:sub:writer",
                        "agent_name": "Writer",
                        "agent_type": "subagent",
                        "status": "working",
                        "progress_percent": 40,
                    },
                    "old": None,
                    "committed_at": 1699876543.123,
                }
            ]
        }
    }

    @property
    def row(self) -> dict[str, Any] | None:
        """The most informative row carried by this change."""
        return self.new or self.old
