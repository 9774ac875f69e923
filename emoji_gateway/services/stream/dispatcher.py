#!/usr/bin/env python3
"""
Mention Dispatcher
Per-event pipeline between the stream and the dialogue:

    parse -> filter -> dedup -> rate limit -> extract text -> route

Routing: a user with a pending proposal goes to confirmation handling;
otherwise the text starts a new generation unless it is a stray yes/no,
which is dropped. Drops are silent to the user but logged and counted.
"""

import asyncio
import weakref
from typing import Optional, Any

from emoji_gateway.common.logging import setup_logging
from emoji_gateway.common.metrics import GatewayMetrics
from emoji_gateway.services.dialogue.intent import UserIntent, classify_intent
from emoji_gateway.services.dialogue.mention_filter import (
    MentionNote,
    MalformedNoteError,
    should_process_mention,
    extract_message_content,
)
from emoji_gateway.services.dialogue.orchestrator import DialogueOrchestrator
from emoji_gateway.services.store.engine import ConversationStore

logger = setup_logging("dispatcher")


class MentionDispatcher:
    """Handles `mention` events delivered by the StreamSupervisor."""

    def __init__(
        self,
        store: ConversationStore,
        orchestrator: DialogueOrchestrator,
        bot_username: str,
        metrics: Optional[GatewayMetrics] = None,
    ):
        if not bot_username:
            raise ValueError("bot_username must be known before dispatching mentions")
        self.store = store
        self.orchestrator = orchestrator
        self.bot_username = bot_username
        self.metrics = metrics or GatewayMetrics()
        # One lock per user while any of their messages is being handled
        self._user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    async def handle_mention(self, payload: Any) -> None:
        """Process one mention event. Never raises."""
        self.metrics.inc("emoji_bot_mentions_received_total")

        try:
            note = MentionNote.from_payload(payload)
        except MalformedNoteError as e:
            logger.warning(f"Dropping malformed mention payload: {e}")
            self.metrics.inc("emoji_bot_mentions_filtered_total")
            return

        try:
            await self._process(note)
        except Exception as e:
            self.metrics.inc("emoji_bot_mentions_failed_total")
            logger.error(f"Error handling mention {note.id} from {note.user_id}: {e}", exc_info=True,
                         extra={"user_id": note.user_id, "note_id": note.id})

    async def _process(self, note: MentionNote) -> None:
        if not should_process_mention(note):
            self.metrics.inc("emoji_bot_mentions_filtered_total")
            return

        user_id = note.user_id

        if not await self.store.mark_processed(note.id):
            logger.debug(f"Duplicate delivery of note {note.id}", extra={"note_id": note.id})
            self.metrics.inc("emoji_bot_mentions_duplicate_total")
            return

        if not await self.store.check_rate_limit(user_id):
            logger.warning(f"Rate limited user {user_id}", extra={"user_id": user_id})
            self.metrics.inc("emoji_bot_mentions_rate_limited_total")
            return

        message = extract_message_content(note.text, self.bot_username)
        if not message:
            logger.debug(f"Empty message after extraction in note {note.id}", extra={"note_id": note.id})
            self.metrics.inc("emoji_bot_mentions_empty_total")
            return

        logger.info(f"Processing mention {note.id} from {user_id}: {message}",
                    extra={"user_id": user_id, "note_id": note.id})

        async with self._lock_for(user_id):
            state = await self.store.get_state(user_id)

            if state is not None:
                logger.debug(f"Existing state for {user_id}, handling confirmation", extra={"user_id": user_id})
                await self.orchestrator.handle_confirmation(user_id, message, note.id, state)
                return

            intent = classify_intent(message)
            if intent is not UserIntent.UNKNOWN:
                logger.debug(f"Dropping stray '{intent.value}' from {user_id} with no pending proposal",
                             extra={"user_id": user_id, "note_id": note.id})
                self.metrics.inc("emoji_bot_mentions_stray_confirmation_total")
                return

            logger.debug(f"No state for {user_id}, starting generation", extra={"user_id": user_id})
            await self.orchestrator.generate_and_propose(user_id, message, note.id)
