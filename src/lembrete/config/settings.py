import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from lembrete.logger import logger
load_dotenv()

__all__ = [
    "DEFAULT_TIMEZONE",
    "STORE_BACKEND", "REMINDERS_FILE", "REMINDERS_DB_FILE", "CONTACTS_FILE",
    "DELIVERY_MAX_ATTEMPTS", "DELIVERY_RETRY_BASE_SECONDS",
    "ENABLE_TELEGRAM_BOT_POLLING", "TELEGRAM_BOT_TOKEN",
    "ALLOWED_TELEGRAM_USER_IDS", "ADMIN_TELEGRAM_USER_ID",
    "OPENAI_API_KEY", "OPENAI_BASE_URL", "LLM_MODEL",
    "ADMIN_HTTP_ENABLED", "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
    "LOG_LEVEL", "LOG_FILE",
    "validate_settings",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


def _parse_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default


def _parse_int_list(name: str) -> list[int]:
    raw = os.getenv(name, "")
    result: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            result.append(int(part))
        except ValueError:
            logger.warning(f"{name} 中包含非法 ID: {part}, 已忽略")
    return result


# 提醒调度
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")
STORE_BACKEND = os.getenv("STORE_BACKEND", "json").strip().lower()
REMINDERS_FILE = os.getenv("REMINDERS_FILE", "data/reminders.json")
REMINDERS_DB_FILE = os.getenv("REMINDERS_DB_FILE", "data/lembrete.db")
CONTACTS_FILE = os.getenv("CONTACTS_FILE", "data/contacts.json")

# 默认只投递一次(至多一次语义)，需要时再打开有限重试
DELIVERY_MAX_ATTEMPTS = max(1, _parse_int("DELIVERY_MAX_ATTEMPTS", 1))
DELIVERY_RETRY_BASE_SECONDS = max(0.0, _parse_float("DELIVERY_RETRY_BASE_SECONDS", 2.0))

# Telegram Bot
ENABLE_TELEGRAM_BOT_POLLING = _parse_bool("ENABLE_TELEGRAM_BOT_POLLING", True)
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
ALLOWED_TELEGRAM_USER_IDS = _parse_int_list("ALLOWED_TELEGRAM_USER_IDS")
ADMIN_TELEGRAM_USER_ID = _parse_int("ADMIN_TELEGRAM_USER_ID", 0)

# LLM 设置
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o")

# Admin API
ADMIN_HTTP_ENABLED = _parse_bool("ADMIN_HTTP_ENABLED", True)
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18080)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")

# 日志
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")
LOG_FILE = os.getenv("LOG_FILE", "logs/lembrete.log")


def validate_settings() -> bool:
    """验证配置参数的有效性，失败时记录 critical 日志并返回 False"""
    errors = []

    try:
        ZoneInfo(DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(f"DEFAULT_TIMEZONE 非法: {DEFAULT_TIMEZONE}")

    if STORE_BACKEND not in ("json", "sqlite"):
        errors.append(f"STORE_BACKEND 非法: {STORE_BACKEND}, 仅支持 json 或 sqlite")

    if ENABLE_TELEGRAM_BOT_POLLING and TELEGRAM_BOT_TOKEN == "":
        errors.append("已启用 Telegram Bot Polling, 但 TELEGRAM_BOT_TOKEN 未设置")

    if OPENAI_API_KEY is None:
        errors.append("OPENAI_API_KEY 未设置，无法解析自然语言提醒")

    for error in errors:
        logger.critical(error)

    if ENABLE_TELEGRAM_BOT_POLLING and not ALLOWED_TELEGRAM_USER_IDS:
        logger.warning("未设置 ALLOWED_TELEGRAM_USER_IDS, 任何 Telegram 用户都可以使用 Bot")

    return not errors
