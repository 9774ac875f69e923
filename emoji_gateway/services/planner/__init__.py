"""AI planner for emoji parameters."""

from .engine import (
    EmojiPlanner,
    EmojiParams,
    EmojiLayout,
    EmojiStyle,
    EmojiMotion,
    PlanResult,
    PlannerError,
    PlannerRefusedError,
)

__all__ = [
    "EmojiPlanner",
    "EmojiParams",
    "EmojiLayout",
    "EmojiStyle",
    "EmojiMotion",
    "PlanResult",
    "PlannerError",
    "PlannerRefusedError",
]
