"""指令层: 把用户的文本消息转换为对调度器的调用，并生成回复文本

关键词(英语/葡萄牙语)优先匹配 列出/清空 指令，其余文本交给 Classifier 解析。
"时间已过" 的请求在这一层直接拒绝，调度器本身会接受并立即投递过期的请求。
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from lembrete.datamodel import Reminder, ScheduleRequest
from lembrete.llm.base import Classifier
from lembrete.logger import logger
from lembrete.storage.contact import ContactBook
from lembrete.utils import (
    InvalidScheduleError,
    format_user_local,
    humanize_until,
    normalize_text,
    now_utc,
    resolve_scheduled_at,
)
from lembrete.world.scheduler import Scheduler

__all__ = ["Orchestrator", "CLEAR_KEYWORDS", "LIST_KEYWORDS"]

CLEAR_KEYWORDS = (
    "clear reminders", "clear my reminders", "delete reminders", "delete my reminders",
    "remove reminders", "remove my reminders", "delete all reminders",
    "apagar lembretes", "deletar lembretes", "remover lembretes", "limpar lista de lembretes",
    "apagar meus lembretes", "excluir todos os lembretes",
)

LIST_KEYWORDS = (
    "list reminders", "show reminders", "my reminders", "active reminders", "which reminders",
    "listar lembretes", "mostrar lembretes", "mostrar agendamentos", "lembretes ativos",
    "quais lembretes", "meus lembretes", "ver lembretes",
)

DEFAULT_CONTENT = "something important"


class Orchestrator:
    def __init__(
        self,
        scheduler: Scheduler,
        classifier: Classifier,
        contacts: ContactBook,
        default_timezone: str,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.scheduler = scheduler
        self.classifier = classifier
        self.contacts = contacts
        self.default_timezone = default_timezone
        self._clock = clock

    async def handle_text(self, owner_id: str, text: str, owner_alias: str | None = None) -> str:
        clean_text = normalize_text(text)
        if not clean_text:
            return "Send me what you want to be reminded of, and when."

        if any(keyword in clean_text for keyword in CLEAR_KEYWORDS):
            logger.info(f"指令: 清空提醒, owner={owner_id}")
            return await self.clear_reminders(owner_id)

        if any(keyword in clean_text for keyword in LIST_KEYWORDS):
            logger.info(f"指令: 列出提醒, owner={owner_id}")
            return await self.list_reminders(owner_id)

        return await self._schedule_from_text(owner_id, text, owner_alias)

    async def list_reminders(self, owner_id: str) -> str:
        reminders = await self.scheduler.list_active(owner_id)
        if not reminders:
            return "📭 You have no scheduled reminders right now. Want to set one? 😊"

        now = self._clock()
        lines = ["📋 Your scheduled reminders:", ""]
        for i, r in enumerate(reminders, start=1):
            lines.append(f"📌 {i}. {r.content}{self._recipient_suffix(r)}")
            lines.append(
                f"   📅 {format_user_local(r.scheduled_at, r.timezone, '%d/%m')} | "
                f"⏰ {format_user_local(r.scheduled_at, r.timezone, '%H:%M')} | "
                f"{humanize_until(r.scheduled_at, now)} | id {r.reminder_id}"
            )
            lines.append("")
        lines.append(f"✅ Total: {len(reminders)} reminder{'s' if len(reminders) > 1 else ''}")
        return "\n".join(lines)

    async def clear_reminders(self, owner_id: str) -> str:
        active = await self.scheduler.list_active(owner_id)
        if not active:
            return "📭 You have no reminders to clear. All clean! 🧹"

        await self.scheduler.cancel_all(owner_id)
        return "🧹 All your reminders were deleted.\n\nIf you need new ones, just ask! 😊"

    async def cancel_reminder(self, owner_id: str, reminder_id: str) -> str:
        if await self.scheduler.cancel_one(owner_id, reminder_id.strip()):
            return "🗑️ Reminder cancelled."
        return "I couldn't find that reminder. Send \"list reminders\" to see the ids."

    async def add_contact(self, alias: str, recipient_id: str) -> str:
        try:
            await self.contacts.set(alias, recipient_id)
        except ValueError:
            return "Usage: /contact <alias> <chat_id>"
        return f"📇 Contact \"{alias.strip()}\" saved."

    async def _schedule_from_text(self, owner_id: str, text: str, owner_alias: str | None) -> str:
        now = self._clock()
        classified = await self.classifier.classify(text, now)

        if not classified.should_schedule:
            logger.info(f"消息不是提醒请求: owner={owner_id}")
            return "I can schedule reminders and messages for you. Try: \"remind me tomorrow at 9 to call mom\"."

        if not classified.date or not classified.time:
            logger.warning(f"提醒请求缺少时间信息: owner={owner_id}, classified={classified}")
            return "Sorry, I didn't get when you want to be reminded. Could you be more specific?"

        timezone = classified.timezone or self.default_timezone
        content = classified.content or DEFAULT_CONTENT

        recipient_id: str | None = None
        recipient_alias: str | None = None
        if classified.recipient_hint:
            recipient_id = await self.contacts.get(classified.recipient_hint)
            if recipient_id is None:
                return (
                    f"❌ Contact \"{classified.recipient_hint}\" not found. "
                    "Add it with /contact <alias> <chat_id>."
                )
            recipient_alias = classified.recipient_hint

        try:
            scheduled_at = resolve_scheduled_at(classified.date, classified.time, timezone)
        except InvalidScheduleError as e:
            logger.warning(f"提醒请求时间非法: owner={owner_id}, {e}")
            return "Sorry, I couldn't understand that date or time. Could you rephrase it?"

        if scheduled_at <= now:
            return "⏰ That time has already passed! Want to schedule it for a bit later?"

        reminder = await self.scheduler.create(
            ScheduleRequest(
                owner_id=owner_id,
                content=content,
                date=classified.date,
                time=classified.time,
                timezone=timezone,
                recipient_id=recipient_id,
                owner_alias=owner_alias,
                recipient_alias=recipient_alias,
            )
        )
        return self._confirmation(reminder)

    def _confirmation(self, reminder: Reminder) -> str:
        header = (
            f"📨 Message to {reminder.recipient_alias} scheduled!"
            if reminder.is_forwarded
            else "✅ Reminder scheduled!"
        )
        return "\n".join([
            header,
            f"📅 {format_user_local(reminder.scheduled_at, reminder.timezone, '%d/%m/%Y')}",
            f"⏰ {format_user_local(reminder.scheduled_at, reminder.timezone, '%H:%M')} ({reminder.timezone.replace('_', ' ')})",
            f"💬 {reminder.content}",
        ])

    @staticmethod
    def _recipient_suffix(reminder: Reminder) -> str:
        if not reminder.is_forwarded:
            return ""
        return f" → {reminder.recipient_alias or reminder.recipient_id}"
