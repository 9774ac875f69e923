"""
Yes/no intent classification for replies to an emoji proposal.

Rule-based and deliberately conservative: a bare ambiguous syllable such as
"いい" is UNKNOWN, only explicit phrases count as an answer.
"""

import re
from enum import Enum
from typing import List, Pattern


class UserIntent(str, Enum):
    """Classified reply to a proposal."""
    YES = "yes"
    NO = "no"
    UNKNOWN = "unknown"


# Prefix matchers are anchored at the start of the normalized text,
# glyph matchers match anywhere.
POSITIVE_PATTERNS: List[Pattern] = [
    re.compile(r"^(はい|yes|ok|おk|おけ|お願い|登録|いいよ|いいね|それで|頼む|よろしく)"),
    re.compile(r"👍|⭕|✅|🙆"),
]

NEGATIVE_PATTERNS: List[Pattern] = [
    re.compile(r"^(いいえ|no|ダメ|だめ|やめ|キャンセル|cancel|作り直|やり直|違う|ちがう|却下)"),
    re.compile(r"👎|❌|🙅|✖"),
]

# A rejection consisting only of one of these carries no new request
BARE_NEGATIVE = re.compile(r"^(いいえ|no|ダメ|だめ|やめ|キャンセル)$", re.IGNORECASE)


def normalize(text: str) -> str:
    return (text or "").lower().strip()


def classify_intent(text: str) -> UserIntent:
    """Classify free text as YES, NO or UNKNOWN. Positive rules win."""
    normalized = normalize(text)

    for pattern in POSITIVE_PATTERNS:
        if pattern.search(normalized):
            return UserIntent.YES

    for pattern in NEGATIVE_PATTERNS:
        if pattern.search(normalized):
            return UserIntent.NO

    return UserIntent.UNKNOWN


def is_bare_negative(text: str) -> bool:
    return bool(BARE_NEGATIVE.match((text or "").strip()))
