#!/usr/bin/env python3
"""
Dialogue Orchestrator for the Emoji Gateway

Per-user state machine with two states:
- no state:    a request runs generation (fonts -> plan -> render -> upload),
               stores a confirming state and replies with a proposal
- confirming:  the next reply is classified; yes registers the emoji,
               no cancels (and regenerates if the reply carries a new request),
               anything else gets a reminder and the state is kept

Collaborator failures are logged and answered with a notice to the user;
nothing raised by a collaborator escapes this module.
"""

from dataclasses import dataclass
from typing import Optional

from emoji_gateway.common.logging import setup_logging
from emoji_gateway.common.metrics import GatewayMetrics
from emoji_gateway.services.dialogue.intent import UserIntent, classify_intent, is_bare_negative
from emoji_gateway.services.misskey.client import MisskeyClient
from emoji_gateway.services.planner.engine import EmojiPlanner, EmojiParams
from emoji_gateway.services.renderer.client import RendererClient
from emoji_gateway.services.store.engine import ConversationStore, ConversationState

logger = setup_logging("dialogue")

# Rejections longer than this may carry a new request ("no, make it cuter")
REGENERATE_MIN_LENGTH = 10

MSG_GENERATION_FAILED = "申し訳ありません、絵文字の生成中にエラーが発生しました。もう一度お試しください。"
MSG_REGISTERED = "絵文字を登録しました！ :{shortcode}: でお使いいただけます！"
MSG_REGISTRATION_FAILED = "絵文字の登録中にエラーが発生しました。ショートコードが既に使用されている可能性があります。"
MSG_CANCELLED = "承知しました。キャンセルしますね。新しいリクエストをお待ちしています！"
MSG_GUIDANCE = "「はい」または「いいえ」でお答えください。登録する場合は「はい」、作り直す場合は「いいえ」と返信してください。"


@dataclass
class GenerationResult:
    success: bool
    file_id: Optional[str] = None
    shortcode: Optional[str] = None
    error: Optional[str] = None


def build_proposal_message(params: EmojiParams) -> str:
    motion = f"\n🎬 アニメーション: {params.motion_type}" if params.motion_type else ""
    return (
        "絵文字を作成しました！\n"
        "\n"
        f"📝 テキスト: {params.text}\n"
        f"🔤 フォント: {params.style.fontId}\n"
        f"🎨 色: {params.style.textColor}{motion}\n"
        f"🏷️ ショートコード: `:{params.shortcode}:`\n"
        "\n"
        "この絵文字を登録しますか？（はい/いいえ）"
    )


class DialogueOrchestrator:
    """Drives generate-and-propose and confirmation for one user message at a time."""

    def __init__(
        self,
        store: ConversationStore,
        renderer: RendererClient,
        planner: EmojiPlanner,
        misskey: MisskeyClient,
        metrics: Optional[GatewayMetrics] = None,
    ):
        self.store = store
        self.renderer = renderer
        self.planner = planner
        self.misskey = misskey
        self.metrics = metrics or GatewayMetrics()

    async def _reply(self, text: str, reply_to_id: str, file_ids=None) -> bool:
        """Send a reply, logging instead of raising on failure."""
        try:
            await self.misskey.create_note(text=text, reply_id=reply_to_id, file_ids=file_ids)
            return True
        except Exception as e:
            logger.error(f"Failed to reply to note {reply_to_id}: {e}", exc_info=True,
                         extra={"note_id": reply_to_id})
            return False

    # -----------------------------------------------------------------------
    # Phase 2: generate and propose
    # -----------------------------------------------------------------------

    async def generate_and_propose(self, user_id: str, user_message: str, reply_to_id: str) -> GenerationResult:
        """
        Generate an emoji for the request and ask the user to confirm it.

        On any failure no state is left behind and the user gets a generic notice.
        """
        state_written = False
        try:
            font_list = await self.renderer.fetch_font_list()

            logger.info(f"Generating emoji params for {user_id}: {user_message}", extra={"user_id": user_id})
            plan = await self.planner.plan(user_message, font_list)
            params = plan.params

            logger.info(f"Rendering emoji :{params.shortcode}:", extra={"shortcode": params.shortcode})
            image = await self.renderer.render(params)

            upload = await self.misskey.upload_file(image, params.shortcode)

            state = ConversationState(
                file_id=upload.id,
                shortcode=params.shortcode,
                reply_to_id=reply_to_id,
                original_text=user_message,
            )
            await self.store.set_state(user_id, state)
            state_written = True

            await self.misskey.create_note(
                text=build_proposal_message(params),
                reply_id=reply_to_id,
                file_ids=[upload.id],
            )

            logger.info(f"Proposal sent to {user_id}: :{params.shortcode}:",
                        extra={"user_id": user_id, "shortcode": params.shortcode})
            self.metrics.inc("emoji_bot_generations_total")
            return GenerationResult(success=True, file_id=upload.id, shortcode=params.shortcode)

        except Exception as e:
            logger.error(f"Generation failed for {user_id}: {e}", exc_info=True,
                         extra={"user_id": user_id, "note_id": reply_to_id})
            self.metrics.inc("emoji_bot_generation_failures_total")

            # The user never saw a proposal, so a stored state would be orphaned
            if state_written:
                try:
                    await self.store.delete_state(user_id)
                except Exception as cleanup_error:
                    logger.error(f"Failed to clear state for {user_id}: {cleanup_error}",
                                 extra={"user_id": user_id})

            await self._reply(MSG_GENERATION_FAILED, reply_to_id)
            return GenerationResult(success=False, error=str(e) or type(e).__name__)

    # -----------------------------------------------------------------------
    # Phase 3: confirmation
    # -----------------------------------------------------------------------

    async def handle_confirmation(
        self,
        user_id: str,
        user_message: str,
        reply_to_id: str,
        state: ConversationState,
    ) -> UserIntent:
        """Route a reply to a pending proposal. Returns the classified intent."""
        intent = classify_intent(user_message)
        logger.debug(f"Confirmation reply from {user_id} classified as {intent.value}",
                     extra={"user_id": user_id})

        if intent is UserIntent.YES:
            await self._handle_yes(user_id, reply_to_id, state)
        elif intent is UserIntent.NO:
            await self._handle_no(user_id, user_message, reply_to_id)
        else:
            await self._reply(MSG_GUIDANCE, reply_to_id)

        return intent

    async def _delete_state(self, user_id: str):
        try:
            await self.store.delete_state(user_id)
        except Exception as e:
            logger.error(f"Failed to clear state for {user_id}: {e}", exc_info=True,
                         extra={"user_id": user_id})

    async def _handle_yes(self, user_id: str, reply_to_id: str, state: ConversationState):
        try:
            await self.misskey.add_emoji(name=state.shortcode, file_id=state.file_id)
        except Exception as e:
            logger.error(f"Failed to register emoji :{state.shortcode}: for {user_id}: {e}",
                         extra={"user_id": user_id, "shortcode": state.shortcode})
            self.metrics.inc("emoji_bot_registration_failures_total")
            await self._delete_state(user_id)
            await self._reply(MSG_REGISTRATION_FAILED, reply_to_id)
            return

        await self._delete_state(user_id)
        self.metrics.inc("emoji_bot_registrations_total")
        logger.info(f"Emoji :{state.shortcode}: registered for {user_id}",
                    extra={"user_id": user_id, "shortcode": state.shortcode})
        await self._reply(MSG_REGISTERED.format(shortcode=state.shortcode), reply_to_id)

    async def _handle_no(self, user_id: str, user_message: str, reply_to_id: str):
        await self._delete_state(user_id)
        self.metrics.inc("emoji_bot_cancellations_total")
        await self._reply(MSG_CANCELLED, reply_to_id)
        logger.info(f"User {user_id} rejected proposal, cleared state", extra={"user_id": user_id})

        if has_new_request(user_message):
            logger.info(f"Rejection from {user_id} carries a new request, regenerating",
                        extra={"user_id": user_id})
            await self.generate_and_propose(user_id, user_message, reply_to_id)


def has_new_request(user_message: str) -> bool:
    """True if a rejection says more than a bare "no"."""
    return len(user_message) > REGENERATE_MIN_LENGTH and not is_bare_negative(user_message)
