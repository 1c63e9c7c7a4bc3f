from __future__ import annotations

import asyncio
import datetime
from functools import wraps

import telegram
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes, MessageHandler, filters

from lembrete.channels.base import Deliverer
from lembrete.core.orchestrator import Orchestrator
from lembrete.datamodel import ChannelType, IncomingMessage, OutgoingMessage, Reminder
from lembrete.events import E, bus
from lembrete.logger import logger
from lembrete.storage.contact import ContactBook


def requires_auth(func):
    @wraps(func)
    async def decorated(self: "TelegramChannel", update: telegram.Update, *args, **kwargs):
        if self.allowed_user_ids and update.effective_user.id not in self.allowed_user_ids:
            logger.warning(f"用户 {update.effective_user.id} 未经允许访问 Bot")
            await update.message.reply_text("You are not allowed to use this bot. Please contact the administrator.")
        else:
            return await func(self, update, *args, **kwargs)
    return decorated


class TelegramChannel(Deliverer):
    def __init__(
        self,
        token: str,
        allowed_user_ids: list[int] | None = None,
        admin_user_id: int = 0,
        contacts: ContactBook | None = None,
    ) -> None:
        self.token = token
        self.allowed_user_ids = allowed_user_ids or []
        self.admin_user_id = admin_user_id
        self.contacts = contacts
        self.orchestrator: Orchestrator | None = None
        self._app: Application | None = None
        self._bot: telegram.Bot | None = None

    def bind(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    def get_status(self) -> dict[str, object]:
        return {
            "initialized": self._bot is not None,
            "polling": self._app is not None and self._app.updater is not None and self._app.updater.running,
        }

    # ----------------- 投递 ----------------
    async def deliver(self, recipient_id: str, content: str) -> bool:
        if self._bot is None:
            logger.error(f"Telegram Bot 尚未初始化，无法投递给 {recipient_id}")
            return False
        try:
            await self._bot.send_message(chat_id=int(recipient_id), text=content)
        except (telegram.error.TelegramError, ValueError) as e:
            logger.error(f"向 Telegram 用户 {recipient_id} 发送消息失败: {e}")
            return False
        bus.emit(E.IO_SEND_MESSAGE, OutgoingMessage(ChannelType.TELEGRAM_BOT_POLLING, recipient_id, content))
        return True

    async def confirm_delivery(self, owner_id: str, reminder: Reminder) -> None:
        label = reminder.recipient_alias or reminder.recipient_id
        await self.deliver(owner_id, f"✅ Your message to {label} was delivered: \"{reminder.content}\"")

    # ----------------- 指令处理 ----------------
    async def _reply(self, update: telegram.Update, text: str) -> None:
        await update.message.reply_text(text)
        bus.emit(E.IO_SEND_MESSAGE, OutgoingMessage(ChannelType.TELEGRAM_BOT_POLLING, str(update.effective_chat.id), text))

    def _require_orchestrator(self) -> Orchestrator:
        if self.orchestrator is None:
            raise RuntimeError("Orchestrator 尚未绑定，请先调用 bind()")
        return self.orchestrator

    async def _remember_sender(self, update: telegram.Update) -> None:
        user = update.effective_user
        if self.contacts is not None and user is not None and user.username:
            await self.contacts.set(user.username, str(update.effective_chat.id))

    @requires_auth
    async def cmd_start(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.info(f"收到 /start 命令来自 Telegram ID: {update.effective_user.id}")
        await self._remember_sender(update)
        await self._reply(update, "Lembrete bot online. Tell me what to remind you of, and when.")

    @requires_auth
    async def cmd_list(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        owner_id = str(update.effective_chat.id)
        await self._reply(update, await self._require_orchestrator().list_reminders(owner_id))

    @requires_auth
    async def cmd_clear(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        owner_id = str(update.effective_chat.id)
        await self._reply(update, await self._require_orchestrator().clear_reminders(owner_id))

    @requires_auth
    async def cmd_cancel(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not context.args:
            await self._reply(update, "Usage: /cancel <reminder_id>")
            return
        owner_id = str(update.effective_chat.id)
        await self._reply(update, await self._require_orchestrator().cancel_reminder(owner_id, context.args[0]))

    @requires_auth
    async def cmd_contact(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not context.args or len(context.args) < 2:
            await self._reply(update, "Usage: /contact <alias> <chat_id>")
            return
        alias = " ".join(context.args[:-1])
        await self._reply(update, await self._require_orchestrator().add_contact(alias, context.args[-1]))

    @requires_auth
    async def process_message(self, update: telegram.Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.message or not update.message.text:
            return

        owner_id = str(update.effective_chat.id)
        logger.info(f"Telegram chat {owner_id} 消息内容: {update.message.text}")
        bus.emit(
            E.IO_MESSAGE_RECEIVED,
            IncomingMessage(
                channel_type=ChannelType.TELEGRAM_BOT_POLLING,
                user_id=owner_id,
                content=update.message.text,
                timestamp=update.message.date,
            ),
        )
        await self._remember_sender(update)

        owner_alias = update.effective_user.first_name if update.effective_user else None
        reply = await self._require_orchestrator().handle_text(owner_id, update.message.text, owner_alias)
        await self._reply(update, reply)

    async def error_handler(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理 telegram 库中发生的错误"""
        logger.opt(exception=context.error).error(f"Telegram 错误: {context.error}")
        if self.admin_user_id != 0 and self._bot is not None:
            try:
                await self._bot.send_message(chat_id=self.admin_user_id, text=f"Warning! Lembrete error: {context.error}")
            except telegram.error.TelegramError as e:
                logger.error(f"向管理员发送错误消息失败: {e}")

    @staticmethod
    def bot_error_callback(error: telegram.error.TelegramError) -> None:
        if isinstance(error, telegram.error.NetworkError):
            logger.warning(f"Telegram Bot 网络错误: {error}")
        else:
            logger.opt(exception=error).error(f"Telegram Bot 发生预期外的错误: {error}")

    # ----------------- 生命周期 ----------------
    async def initialize(self) -> None:
        """初始化 Bot，使其可以投递消息；此时还不接收用户指令"""
        app = ApplicationBuilder().token(self.token).build()
        app.add_handler(CommandHandler("start", self.cmd_start))
        app.add_handler(CommandHandler("list", self.cmd_list))
        app.add_handler(CommandHandler("clear", self.cmd_clear))
        app.add_handler(CommandHandler("cancel", self.cmd_cancel))
        app.add_handler(CommandHandler("contact", self.cmd_contact))
        app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self.process_message))
        app.add_error_handler(self.error_handler)

        await app.initialize()
        self._app = app
        self._bot = app.bot
        logger.info("Telegram Bot 已初始化")

    async def start_polling(self) -> None:
        if self._app is None:
            raise RuntimeError("Telegram Bot 尚未初始化，请先调用 initialize()")
        self._require_orchestrator()
        await self._app.updater.start_polling(
            poll_interval=0.5,
            timeout=datetime.timedelta(seconds=15),
            bootstrap_retries=-1,
            drop_pending_updates=False,  # 保留下线期间的消息
            error_callback=self.bot_error_callback,
        )
        await self._app.start()
        logger.info("Telegram Bot Polling 已启动")

    async def stop(self) -> None:
        if self._app is None:
            return
        logger.info("关闭 Telegram Bot Polling...")
        if self._app.updater is not None and self._app.updater.running:
            await self._app.updater.stop()
        if self._app.running:
            await self._app.stop()
        await self._app.shutdown()
        self._app = None
        self._bot = None

    async def run(self, shutdown_event: asyncio.Event) -> None:
        await self.start_polling()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()
