"""Eligibility filter and text extraction for inbound mentions."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from emoji_gateway.common.logging import setup_logging

logger = setup_logging("filter")


class MalformedNoteError(ValueError):
    """Raised when a streaming payload is not a usable note."""
    pass


@dataclass
class NoteAuthor:
    """Author metadata carried on a note."""
    id: str
    username: str = ""
    host: Optional[str] = None  # None for local users
    is_bot: bool = False


@dataclass
class MentionNote:
    """A note that mentions the bot."""
    id: str
    user_id: str
    user: NoteAuthor
    text: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MentionNote":
        """Build from a Misskey note object as delivered on the `mention` event."""
        if not isinstance(payload, dict):
            raise MalformedNoteError(f"note payload must be an object, got {type(payload).__name__}")
        user = payload.get("user")
        if not payload.get("id") or not isinstance(user, dict):
            raise MalformedNoteError("note payload lacks id or user")

        user_id = payload.get("userId") or user.get("id")
        if not user_id:
            raise MalformedNoteError("note payload lacks userId")

        author = NoteAuthor(
            id=user_id,
            username=user.get("username") or "",
            host=user.get("host"),
            is_bot=bool(user.get("isBot", False)),
        )
        return cls(
            id=payload["id"],
            user_id=user_id,
            user=author,
            text=payload.get("text"),
            raw=payload,
        )


def is_local_user(note: MentionNote) -> bool:
    """Local users have no host."""
    return not note.user.host


def should_process_mention(note: MentionNote) -> bool:
    """
    Decide whether a mention is eligible for processing.

    Rejects, in order: remote authors, notes without text, bot authors.
    """
    if not is_local_user(note):
        logger.debug(f"Ignored remote user {note.user_id} from {note.user.host}")
        return False

    if not note.text:
        logger.debug(f"Ignored note {note.id} without text")
        return False

    # Bot-to-bot replies would loop forever
    if note.user.is_bot:
        logger.debug(f"Ignored bot user {note.user_id}")
        return False

    return True


def extract_message_content(text: Optional[str], bot_username: str) -> str:
    """Strip the leading @bot mention and surrounding whitespace."""
    if not text:
        return ""

    mention_pattern = re.compile(rf"^@{re.escape(bot_username)}\s*", re.IGNORECASE)
    return mention_pattern.sub("", text, count=1).strip()
