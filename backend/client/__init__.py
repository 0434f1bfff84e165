"""Agent-side logging client for the Operations Room."""

from client.logger import LogResult, OperationsLogger, new_event_id

__all__ = ["LogResult", "OperationsLogger", "new_event_id"]
