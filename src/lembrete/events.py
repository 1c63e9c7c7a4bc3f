"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

提醒的状态变化统一通过 E.REMINDER_STATE_CHANGED 广播，
参数为 reminder(Reminder) 与 state(ReminderState)。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Any, Awaitable, Callable, Union

from lembrete.logger import logger

Handler = Callable[..., Union[Awaitable[None], None]]

# 事件名集中定义
class E:
    IO_MESSAGE_RECEIVED = "io.message_received"
    IO_SEND_MESSAGE = "io.send_message"
    REMINDER_STATE_CHANGED = "reminder.state_changed"


class Bus(AsyncIOEventEmitter):
    def on(self, event: str, handler: Any = None) -> Any:
        """注册事件处理器，可作为装饰器使用"""
        def decorator(fn: Handler) -> Handler:
            logger.debug(f"注册事件处理器: {event} -> {getattr(fn, '__name__', fn)}")
            super(Bus, self).on(event, fn)
            return fn

        if handler is not None:
            return decorator(handler)
        return decorator


bus = Bus()

__all__ = ["Bus", "bus", "E"]
