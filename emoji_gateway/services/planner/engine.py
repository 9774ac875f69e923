#!/usr/bin/env python3
"""
Emoji Parameter Planner
Turns a user's free-text request into renderer parameters with an OpenAI
structured-output call.
"""

from dataclasses import dataclass
from typing import List, Optional, Literal

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from emoji_gateway.config import get_config
from emoji_gateway.config.models import OpenAIConfig
from emoji_gateway.common.logging import setup_logging

logger = setup_logging("planner")


# Structured Outputs needs every field present, optional ones are nullable
class EmojiLayout(BaseModel):
    mode: Optional[Literal["square", "banner"]] = Field(
        ..., description="square: 256x256 fixed, banner: height 256, width variable")
    alignment: Optional[Literal["left", "center", "right"]] = Field(..., description="Text alignment")


class EmojiStyle(BaseModel):
    fontId: str = Field(..., description="Font ID from the available list")
    textColor: str = Field(..., description="Text color in hex format (e.g., #FF0000)")
    outlineColor: Optional[str] = Field(..., description="Outline color in hex format")
    outlineWidth: Optional[int] = Field(..., ge=0, le=20, description="Outline width in pixels (0-20)")
    shadow: Optional[bool] = Field(..., description="Enable drop shadow")


class EmojiMotion(BaseModel):
    type: Optional[Literal["none", "shake", "spin", "bounce", "gaming"]] = Field(..., description="Animation type")
    intensity: Optional[Literal["low", "medium", "high"]] = Field(..., description="Animation intensity")


class EmojiParams(BaseModel):
    """Emoji generation parameters matching the renderer API."""
    text: str = Field(..., description="The text to render on the emoji (max 20 chars, use \\n for newlines)")
    layout: Optional[EmojiLayout]
    style: EmojiStyle
    motion: Optional[EmojiMotion]
    shortcode: str = Field(
        ..., description="Suggested shortcode for the emoji (lowercase alphanumeric and underscores only)")

    @property
    def motion_type(self) -> Optional[str]:
        """Animation type, or None when the emoji is static."""
        if self.motion and self.motion.type and self.motion.type != "none":
            return self.motion.type
        return None


@dataclass
class PlanResult:
    params: EmojiParams
    explanation: str


class PlannerError(Exception):
    """Raised when no usable parameters were produced"""
    pass


class PlannerRefusedError(PlannerError):
    """Raised when the model refuses the request"""
    pass


SYSTEM_PROMPT = """You are an emoji design assistant for Misskey. Your task is to analyze user requests and generate parameters for custom emoji creation.

Available font IDs:
{fonts}

Guidelines:
1. Choose an appropriate fontId that matches the mood/style requested
2. Generate a creative shortcode using only lowercase letters, numbers, and underscores
3. Keep text concise for emoji display (ideally 1-4 characters or short words, max 20 chars)
4. Select colors that enhance readability and visual appeal (use hex format like #FF0000)
5. Consider the context and tone of the user's request
6. Use motion effects when appropriate (shake for excitement, spin for fun, bounce for playful, gaming for rainbow effect)
7. Add outline (outlineWidth > 0) for better readability on various backgrounds
8. Use \\n for multi-line text"""


def build_system_prompt(font_list: List[str]) -> str:
    return SYSTEM_PROMPT.format(fonts="\n".join(f"- {font}" for font in font_list))


def explain(params: EmojiParams) -> str:
    """One-line Japanese summary of the chosen parameters."""
    motion = f"（{params.motion_type}アニメーション付き）" if params.motion_type else ""
    return f"テキスト「{params.text}」をフォント「{params.style.fontId}」で作成します{motion}。"


def _find_refusal(response) -> Optional[str]:
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            if getattr(part, "type", None) == "refusal":
                return getattr(part, "refusal", "") or "refused"
    return None


class EmojiPlanner:
    """AI planner producing EmojiParams for a request."""

    def __init__(self, config: Optional[OpenAIConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or get_config().openai
        self.client = client or AsyncOpenAI(api_key=self.config.api_key, timeout=self.config.timeout)

    async def plan(self, user_message: str, font_list: List[str]) -> PlanResult:
        """
        Plan emoji parameters for a request.

        Args:
            user_message: The user's request text
            font_list: Font IDs the renderer accepts

        Returns:
            PlanResult with parameters and a human-readable explanation

        Raises:
            PlannerRefusedError: If the model refused
            PlannerError: If no structured output was produced
        """
        response = await self.client.responses.parse(
            model=self.config.model,
            input=[
                {"role": "system", "content": build_system_prompt(font_list)},
                {"role": "user", "content": user_message},
            ],
            text_format=EmojiParams,
            max_output_tokens=self.config.max_output_tokens,
        )

        refusal = _find_refusal(response)
        if refusal is not None:
            logger.warning(f"LLM refused to generate emoji params: {refusal}")
            raise PlannerRefusedError("Failed to generate emoji parameters: request refused")

        params = getattr(response, "output_parsed", None)
        if params is None:
            logger.error(f"Failed to get parsed output from LLM (response id={getattr(response, 'id', None)})")
            raise PlannerError("Failed to generate emoji parameters")

        return PlanResult(params=params, explanation=explain(params))

    async def close(self):
        await self.client.close()
