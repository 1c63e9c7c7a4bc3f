from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "Reminder", "ReminderState", "ScheduleRequest", "RestoreResult",
    "ClassifiedRequest",
    "ChannelType", "IncomingMessage", "OutgoingMessage",
]

# ----------------- Reminder 数据模型 ----------------
class ReminderState(str, Enum):
    SCHEDULED = "scheduled"  # 已持久化，计时器已装填
    FIRING = "firing"        # 计时器已触发，正在投递
    DELIVERED = "delivered"
    FAILED = "failed"        # 投递失败，记录同样会被清除
    CANCELLED = "cancelled"
    EXPIRED = "expired"      # 重启时已过期，未投递直接清除

    @property
    def is_live(self) -> bool:
        return self in (ReminderState.SCHEDULED, ReminderState.FIRING)


@dataclass
class Reminder:
    reminder_id: str  # ULID
    owner_id: str
    recipient_id: str  # 个人提醒时与 owner_id 相同
    content: str
    scheduled_at: datetime  # 带时区的 UTC 时间，创建后不再改变
    timezone: str  # IANA 时区字符串，仅用于展示
    owner_alias: Optional[str] = None
    recipient_alias: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_forwarded(self) -> bool:
        return self.owner_id != self.recipient_id


@dataclass
class ScheduleRequest:
    owner_id: str
    content: str
    date: str  # 格式: "YYYY-MM-DD"
    time: str  # 格式: "HH:MM" 或 "HH:MM:SS"
    timezone: str
    recipient_id: Optional[str] = None
    owner_alias: Optional[str] = None
    recipient_alias: Optional[str] = None


@dataclass
class RestoreResult:
    rearmed: list[Reminder]
    expired: list[Reminder]


# ----------------- NLU 数据模型 ----------------
@dataclass
class ClassifiedRequest:
    should_schedule: bool
    date: Optional[str] = None
    time: Optional[str] = None
    timezone: Optional[str] = None
    content: Optional[str] = None
    recipient_hint: Optional[str] = None  # 联系人别名，为空表示提醒自己


# ----------------- Channel 数据模型 ----------------
class ChannelType(str, Enum):
    TELEGRAM_BOT_POLLING = "telegram_bot_polling"
    CONSOLE = "console"


@dataclass
class IncomingMessage:
    channel_type: ChannelType
    user_id: str  # 平台上的聊天 ID
    content: str
    metadata: Optional[Dict[str, Any]] = None  # 平台特定元数据
    timestamp: Optional[datetime] = None


@dataclass
class OutgoingMessage:
    channel_type: ChannelType
    user_id: str
    content: str
    metadata: Optional[Dict[str, Any]] = None
