from abc import ABC, abstractmethod

from lembrete.datamodel import Reminder

__all__ = ["Deliverer"]


class Deliverer(ABC):
    """消息投递能力，由具体通道实现，在构造 Scheduler 时注入一次"""

    @abstractmethod
    async def deliver(self, recipient_id: str, content: str) -> bool:
        """把 content 发送给 recipient_id，成功返回 True；失败可返回 False 或直接抛异常"""

    async def confirm_delivery(self, owner_id: str, reminder: Reminder) -> None:
        """转发给第三方的消息送达后通知发起人，默认不做任何事"""
        return None
