# dosebot/adapters/telegram_adapter.py
from __future__ import annotations

import contextlib
import logging
from typing import Any, Optional

from aiogram import Bot, Dispatcher, F
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message

from dosebot.core.actions import ACTION_SNOOZE, ACTION_TAKEN, callback_data, parse_callback
from dosebot.core.errors import NotFound
from dosebot.core.i18n import MESSAGES, STATUS_LABEL, fmt
from dosebot.core.logging_utils import kv
from dosebot.core.reminder_engine import Outcome
from dosebot.core.reminder_messaging import Reminder

# Plain-text aliases for the slash commands
TEXT_ALIASES = {
    "設定提醒": "setup",
    "查詢提醒": "status",
    "說明": "help",
    "測試": "fire",
}


def render_reminder(reminder: Reminder) -> str:
    lines = [
        fmt("reminder_title", meal_label=reminder.meal_label),
        MESSAGES["reminder_intro"],
    ]
    lines += [fmt("reminder_drug", drug=d) for d in reminder.drugs]
    if reminder.retry_count > 0:
        lines.append(fmt("reminder_retry", n=reminder.retry_count))
    return "\n".join(lines)


def build_reminder_keyboard(reminder: Reminder) -> InlineKeyboardMarkup:
    # The card stands for attempt retry_count + 1, i.e. the stored count once delivered
    attempt = reminder.retry_count + 1

    def data(action: str) -> str:
        return callback_data(action, reminder.slot_id, reminder.day, attempt)

    return InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(
                    text=MESSAGES["btn_taken"],
                    callback_data=data(ACTION_TAKEN),
                ),
                InlineKeyboardButton(
                    text=MESSAGES["btn_snooze"],
                    callback_data=data(ACTION_SNOOZE),
                ),
            ]
        ]
    )


class TelegramAdapter:
    """
    Aiogram 3.x transport:

    • Outbound: implements the dispatch port (reminder cards with two inline
      buttons, plain notices). Delivery errors are logged and reported as False.
    • Inbound: button taps become ActionEvents for the action handler; slash
      commands (and their Chinese text aliases) go to the admin service.
    """

    def __init__(
        self,
        bot_token: str,
        actions: Any | None = None,
        admin: Any | None = None,
    ) -> None:
        self.bot = Bot(token=bot_token)
        self.dp = Dispatcher()

        self.actions = actions
        self.admin = admin

        self.log = logging.getLogger("dosebot.adapter")

        # ---- Handlers (IMPORTANT: commands first, then generic text) ----
        self.dp.message.register(self.on_start, CommandStart())
        self.dp.message.register(self.on_setup, Command("setup"))
        self.dp.message.register(self.on_status, Command("status"))
        self.dp.message.register(self.on_fire, Command("fire"))
        self.dp.message.register(self.on_help, Command("help"))
        self.dp.message.register(self.on_text, F.text)
        self.dp.callback_query.register(self.on_callback, F.data.startswith("dose:"))

    def attach(self, *, actions: Any, admin: Any) -> None:
        self.actions = actions
        self.admin = admin
        self.log.debug("adapter.attached " + kv(actions=type(actions).__name__))

    # ------------------------------------------------------------------------------
    # Outbound (dispatch port)
    # ------------------------------------------------------------------------------
    async def send_reminder(self, chat_id: str, reminder: Reminder) -> bool:
        try:
            await self.bot.send_message(
                chat_id=int(chat_id),
                text=render_reminder(reminder),
                reply_markup=build_reminder_keyboard(reminder),
            )
        except TelegramAPIError as e:
            self.log.warning(
                "msg.out.fail " + kv(chat_id=chat_id, kind="reminder", err=str(e))
            )
            return False
        self.log.info(
            "msg.out.reminder "
            + kv(chat_id=chat_id, slot=reminder.slot_id, retry=reminder.retry_count)
        )
        return True

    async def send_notice(self, chat_id: str, text: str) -> bool:
        try:
            await self.bot.send_message(chat_id=int(chat_id), text=text)
        except TelegramAPIError as e:
            self.log.warning("msg.out.fail " + kv(chat_id=chat_id, kind="notice", err=str(e)))
            return False
        self.log.info("msg.out.notice " + kv(chat_id=chat_id, text=text))
        return True

    # ------------------------------------------------------------------------------
    # Inbound: buttons
    # ------------------------------------------------------------------------------
    async def on_callback(self, callback: CallbackQuery) -> None:
        chat_id = _chat_id_of(callback)
        data = callback.data or ""
        self.log.info("cb.in " + kv(chat_id=chat_id, data=data))

        toast: Optional[str] = None
        try:
            event = parse_callback(data, chat_id, display_name=_display_name(callback))
            await self.actions.handle(event)
        except ValueError as e:
            self.log.info("cb.ignored " + kv(chat_id=chat_id, data=data, err=str(e)))
            toast = fmt("unknown_slot")
        except NotFound as e:
            self.log.info("cb.not_found " + kv(chat_id=chat_id, err=str(e)))
            toast = fmt("unknown_slot")
        except Exception as e:
            # Store or transport trouble; the spinner is still cleared below
            self.log.error(
                "cb.error " + kv(chat_id=chat_id, data=data, err=f"{type(e).__name__}: {e}")
            )

        # Acknowledge the callback to clear the Telegram spinner
        with contextlib.suppress(Exception):
            await callback.answer(toast)

    # ------------------------------------------------------------------------------
    # Inbound: commands
    # ------------------------------------------------------------------------------
    async def on_start(self, message: Message) -> None:
        await self.on_setup(message)

    async def on_setup(self, message: Message) -> None:
        chat_id = _chat_id_of(message)
        await self.admin.register(chat_id, _display_name(message))
        await self.send_notice(chat_id, self.admin.render_schedule())

    async def on_status(self, message: Message) -> None:
        chat_id = _chat_id_of(message)
        try:
            rows = await self.admin.today_status(chat_id)
        except NotFound:
            await self.send_notice(chat_id, fmt("status_unregistered"))
            return
        await self.send_notice(chat_id, self.admin.render_status(rows))

    async def on_fire(self, message: Message, command: CommandObject | None = None) -> None:
        chat_id = _chat_id_of(message)
        slot_id = ((command.args if command else None) or "").strip()
        slots = [s.slot_id for s in self.admin.catalog]
        if not slot_id:
            await self.send_notice(chat_id, fmt("fire_usage", slots=", ".join(slots)))
            return
        try:
            user, _ = await self.admin.register(chat_id, _display_name(message))
            outcome = await self.admin.force_fire(user.external_id, slot_id)
        except NotFound:
            await self.send_notice(chat_id, fmt("fire_usage", slots=", ".join(slots)))
            return

        slot = self.admin.catalog.get(slot_id)
        if outcome == Outcome.REMINDED:
            await self.send_notice(chat_id, fmt("fire_sent", meal_label=slot.meal_label))
        elif outcome == Outcome.SKIPPED:
            rows = {r.slot_id: r for r in await self.admin.today_status(chat_id)}
            await self.send_notice(
                chat_id,
                fmt(
                    "fire_skipped",
                    meal_label=slot.meal_label,
                    status=STATUS_LABEL.get(rows[slot_id].status or "", "—"),
                ),
            )

    async def on_help(self, message: Message) -> None:
        await self.send_notice(_chat_id_of(message), self.admin.render_help())

    async def on_text(self, message: Message) -> None:
        chat_id = _chat_id_of(message)
        text = (message.text or "").strip()
        self.log.info("msg.in " + kv(chat_id=chat_id, text=text))

        alias = TEXT_ALIASES.get(text)
        if alias == "setup":
            await self.on_setup(message)
        elif alias == "status":
            await self.on_status(message)
        elif alias == "help":
            await self.on_help(message)
        elif alias == "fire":
            await self.on_fire(message, None)
        else:
            await self.send_notice(chat_id, MESSAGES["welcome"])

    async def run_polling(self) -> None:
        self.log.debug("polling.run")
        await self.bot.delete_webhook(drop_pending_updates=True)
        await self.dp.start_polling(self.bot)

    async def close(self) -> None:
        await self.bot.session.close()


def _chat_id_of(obj: Any) -> str:
    # Message carries .chat; CallbackQuery carries .message.chat
    chat = getattr(obj, "chat", None)
    if chat is None:
        chat = getattr(getattr(obj, "message", None), "chat", None)
    if chat is not None:
        return str(chat.id)
    user = getattr(obj, "from_user", None)
    return str(user.id) if user else "0"


def _display_name(obj: Any) -> str:
    user = getattr(obj, "from_user", None)
    if user is None:
        return ""
    return getattr(user, "full_name", None) or getattr(user, "username", None) or ""


__all__ = ["TelegramAdapter", "render_reminder", "build_reminder_keyboard"]
