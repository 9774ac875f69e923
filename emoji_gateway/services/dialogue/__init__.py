"""
Emoji Gateway - Dialogue

Mention filtering, yes/no intent classification and the
generate -> propose -> confirm state machine.
"""
from .intent import UserIntent, classify_intent, is_bare_negative
from .mention_filter import (
    MentionNote,
    NoteAuthor,
    MalformedNoteError,
    should_process_mention,
    extract_message_content,
)
from .orchestrator import DialogueOrchestrator, GenerationResult

__all__ = [
    "UserIntent",
    "classify_intent",
    "is_bare_negative",
    "MentionNote",
    "NoteAuthor",
    "MalformedNoteError",
    "should_process_mention",
    "extract_message_content",
    "DialogueOrchestrator",
    "GenerationResult",
]
