"""
一个简单的运行时指标收集类，用于统计提醒状态变化与消息流量，供 Admin API 查看。
提醒状态变化同时写入事件日志(见 logger.log_event)。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from lembrete.datamodel import Reminder, ReminderState
from lembrete.events import E, bus
from lembrete.logger import log_event
from lembrete.utils import to_iso_utc


@dataclass
class RuntimeMetrics:
    reminder_state_counts: dict[str, int] = field(default_factory=dict)
    msg_in_count: int = 0
    msg_out_count: int = 0
    last_delivery_at: float | None = None

    def record_reminder_state(self, state: ReminderState) -> None:
        key = ReminderState(state).value
        self.reminder_state_counts[key] = self.reminder_state_counts.get(key, 0) + 1
        if state in (ReminderState.DELIVERED, ReminderState.FAILED):
            self.last_delivery_at = time.time()

    def record_msg_in(self) -> None:
        self.msg_in_count += 1

    def record_msg_out(self) -> None:
        self.msg_out_count += 1

    def snapshot(self) -> dict:
        return {
            "reminders": {state.value: self.reminder_state_counts.get(state.value, 0) for state in ReminderState},
            "msg_in_count": self.msg_in_count,
            "msg_out_count": self.msg_out_count,
            "last_delivery_at_epoch": self.last_delivery_at,
            "last_delivery_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_delivery_at))
                if self.last_delivery_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


@bus.on(E.REMINDER_STATE_CHANGED)
def _count_reminder_state(reminder: Reminder, state: ReminderState) -> None:
    runtime_metrics.record_reminder_state(state)
    log_event(
        "REMINDER_STATE",
        {
            "reminder_id": reminder.reminder_id,
            "owner_id": reminder.owner_id,
            "recipient_id": reminder.recipient_id,
            "scheduled_at": to_iso_utc(reminder.scheduled_at),
            "state": ReminderState(state).value,
        },
    )


@bus.on(E.IO_MESSAGE_RECEIVED)
def _count_msg_in(*args, **kwargs) -> None:
    runtime_metrics.record_msg_in()


@bus.on(E.IO_SEND_MESSAGE)
def _count_msg_out(*args, **kwargs) -> None:
    runtime_metrics.record_msg_out()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
