from lembrete.logger import setup_logging, logger
from lembrete.config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level="INFO",
)

import asyncio
import signal
import sys
import time

import aiosqlite

from lembrete.admin.app import create_app
from lembrete.admin.http_server import main_loop as admin_http_main
from lembrete.admin.schemas import RuntimeControl
from lembrete.channels.base import Deliverer
from lembrete.channels.console import ConsoleDeliverer
from lembrete.channels.telegram_polling import TelegramChannel
from lembrete.core.orchestrator import Orchestrator
from lembrete.llm.openai_client import OpenAIClassifier
import lembrete.metrics  # 注册指标事件处理器
import lembrete.storage.db_config as db_config
from lembrete.storage.contact import ContactBook
from lembrete.storage.reminder import JsonReminderStore, ReminderStore, SqliteReminderStore
from lembrete.world.scheduler import Scheduler

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) / SIGTERM 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


async def _create_store() -> tuple[ReminderStore, aiosqlite.Connection | None]:
    if STORE_BACKEND == "sqlite":
        conn = await db_config.init_db(REMINDERS_DB_FILE)
        logger.info(f"使用 SQLite 存储提醒: {REMINDERS_DB_FILE}")
        return SqliteReminderStore(conn), conn

    logger.info(f"使用 JSON 文档存储提醒: {REMINDERS_FILE}")
    return JsonReminderStore(REMINDERS_FILE), None


async def main():
    # 注册信号处理器
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    store, conn = await _create_store()
    contacts = ContactBook(CONTACTS_FILE)

    telegram_channel: TelegramChannel | None = None
    deliverer: Deliverer
    if ENABLE_TELEGRAM_BOT_POLLING:
        telegram_channel = TelegramChannel(
            token=TELEGRAM_BOT_TOKEN,
            allowed_user_ids=ALLOWED_TELEGRAM_USER_IDS,
            admin_user_id=ADMIN_TELEGRAM_USER_ID,
            contacts=contacts,
        )
        deliverer = telegram_channel
    else:
        logger.warning("Telegram Bot Polling 已禁用")
        deliverer = ConsoleDeliverer()

    scheduler = Scheduler(
        store,
        deliverer,
        max_attempts=DELIVERY_MAX_ATTEMPTS,
        retry_base_seconds=DELIVERY_RETRY_BASE_SECONDS,
    )
    orchestrator = Orchestrator(
        scheduler=scheduler,
        classifier=OpenAIClassifier(),
        contacts=contacts,
        default_timezone=DEFAULT_TIMEZONE,
    )

    try:
        # 投递通道先就绪，再恢复计时器，最后才开始接收用户指令
        if telegram_channel is not None:
            telegram_channel.bind(orchestrator)
            await telegram_channel.initialize()

        await scheduler.run_restorer()

        tasks = []
        if telegram_channel is not None:
            tasks.append(telegram_channel.run(shutdown_event))

        if ADMIN_HTTP_ENABLED:
            app = create_app(
                RuntimeControl(shutdown_event=shutdown_event, started_at=time.time()),
                scheduler,
                contacts=contacts,
                channel_status=telegram_channel.get_status if telegram_channel is not None else None,
            )
            tasks.append(admin_http_main(app, shutdown_event))
        else:
            logger.warning("Admin HTTP 服务已禁用")

        tasks.append(shutdown_event.wait())
        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭 Lembrete...")
        if telegram_channel is not None:
            await telegram_channel.stop()
        await scheduler.shutdown()

        if conn is not None:
            logger.info("关闭数据库连接...")
            await db_config.close_db(conn)
        logger.info("Lembrete 已关闭")


def run() -> None:
    if not validate_settings():
        sys.exit(1)
    logger.info("启动 Lembrete...")
    asyncio.run(main())


if __name__ == "__main__":
    run()
