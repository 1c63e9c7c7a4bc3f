from lembrete.channels.base import Deliverer
from lembrete.datamodel import ChannelType, OutgoingMessage, Reminder
from lembrete.events import E, bus
from lembrete.logger import logger


class ConsoleDeliverer(Deliverer):
    def __init__(self) -> None:
        logger.warning("未启用任何消息通道，提醒只会输出到日志")

    async def deliver(self, recipient_id: str, content: str) -> bool:
        logger.info(f"[console] -> {recipient_id}: {content}")
        bus.emit(E.IO_SEND_MESSAGE, OutgoingMessage(ChannelType.CONSOLE, recipient_id, content))
        return True

    async def confirm_delivery(self, owner_id: str, reminder: Reminder) -> None:
        label = reminder.recipient_alias or reminder.recipient_id
        logger.info(f"[console] -> {owner_id}: 已送达给 {label}: {reminder.content}")
