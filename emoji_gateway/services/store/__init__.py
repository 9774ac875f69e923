"""Conversation state, deduplication and rate limiting on Valkey/Redis."""

from .engine import ConversationStore, ConversationState, KEY_PREFIX

__all__ = ["ConversationStore", "ConversationState", "KEY_PREFIX"]
