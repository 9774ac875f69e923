"""Streaming connection supervision and mention dispatch."""

from .supervisor import StreamSupervisor, fibonacci_backoff, MAX_RECONNECT_DELAY
from .dispatcher import MentionDispatcher

__all__ = ["StreamSupervisor", "fibonacci_backoff", "MAX_RECONNECT_DELAY", "MentionDispatcher"]
