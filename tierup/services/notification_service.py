"""
Notification dispatch over Telegram.

Users are addressed by their identity id, which doubles as their Telegram
chat id.  Every send is fire-and-forget: it is scheduled after the database
commit, and delivery failures are logged, never raised.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Set

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError

from tierup.config import settings
from tierup.models.models import Competition, Participant, ParticipantStatus

logger = logging.getLogger(__name__)

_STATUS_LINES = {
    ParticipantStatus.APPROVED:  "Your entry has been *approved*. Good luck!",
    ParticipantStatus.REJECTED:  "Your entry was *not accepted* this time.",
    ParticipantStatus.WITHDRAWN: "Your entry has been *withdrawn*.",
    ParticipantStatus.PENDING:   "Your application is *awaiting review*.",
}


def build_bot() -> Optional[Bot]:
    if not settings.notifications_enabled:
        return None
    return Bot(
        token=settings.BOT_TOKEN,
        default=DefaultBotProperties(parse_mode=ParseMode.MARKDOWN),
    )


class Notifier:
    """Schedules Telegram messages without blocking the caller."""

    def __init__(self, bot: Optional[Bot] = None) -> None:
        self._bot = bot
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self._bot is not None

    # ── Events ────────────────────────────────────────────────────────────────

    def vote_accepted(self, participant: Participant, competition: Competition) -> None:
        text = (
            f"🗳 *New vote!*\n\n"
            f"🏆 {competition.title}\n"
            f"🎨 {participant.submission_title}\n"
            f"📊 Total votes: `{participant.vote_count}`"
        )
        self._dispatch(participant.user_id, text)

    def participation_status_changed(
        self,
        participant: Participant,
        competition: Competition,
    ) -> None:
        line = _STATUS_LINES.get(participant.status, f"Status: {participant.status}")
        line = f"{participant.status_emoji} {line}"
        text = (
            f"{line}\n\n"
            f"🏆 {competition.title}\n"
            f"🎨 {participant.submission_title}"
        )
        self._dispatch(participant.user_id, text)

    def advancement_completed(
        self,
        user_ids: Iterable[int],
        source: Competition,
        target: Competition,
    ) -> None:
        text = (
            f"🚀 *You advanced to the {target.tier_label} tier!*\n\n"
            f"🏅 From: {source.title}\n"
            f"🏆 To: *{target.title}*\n"
            f"📅 Voting opens {target.voting_start:%Y-%m-%d}.\n\n"
            f"Your entry has been registered and approved automatically."
        )
        for user_id in user_ids:
            self._dispatch(user_id, text)

    # ── Delivery ──────────────────────────────────────────────────────────────

    def _dispatch(self, chat_id: int, text: str) -> None:
        if self._bot is None:
            logger.debug("Notifications disabled; skipped message to %d", chat_id)
            return
        task = asyncio.create_task(self._send(chat_id, text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, chat_id: int, text: str) -> None:
        try:
            await self._bot.send_message(chat_id=chat_id, text=text)
        except TelegramAPIError as e:
            logger.warning("Could not notify user chat_id=%d: %s", chat_id, e)

    async def drain(self) -> None:
        """Wait for every scheduled message (shutdown / tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._bot is not None:
            await self._bot.session.close()
