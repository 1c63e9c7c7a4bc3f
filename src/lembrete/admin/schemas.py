from __future__ import annotations

import asyncio
from dataclasses import dataclass

from pydantic import BaseModel, Field

from lembrete.datamodel import Reminder
from lembrete.utils import format_user_local, to_iso_utc


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float


class ShutdownRequest(BaseModel):
    reason: str = Field(default="manual")


class ReminderOut(BaseModel):
    reminder_id: str
    owner_id: str
    recipient_id: str
    content: str
    scheduled_at: str
    scheduled_at_local: str
    timezone: str
    owner_alias: str | None = None
    recipient_alias: str | None = None
    state: str | None = None

    @classmethod
    def from_reminder(cls, reminder: Reminder, state: str | None = None) -> "ReminderOut":
        return cls(
            reminder_id=reminder.reminder_id,
            owner_id=reminder.owner_id,
            recipient_id=reminder.recipient_id,
            content=reminder.content,
            scheduled_at=to_iso_utc(reminder.scheduled_at),
            scheduled_at_local=format_user_local(reminder.scheduled_at, reminder.timezone),
            timezone=reminder.timezone,
            owner_alias=reminder.owner_alias,
            recipient_alias=reminder.recipient_alias,
            state=state,
        )
