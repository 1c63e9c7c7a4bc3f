"""日志模块

级别支持: TRACE/DEBUG/INFO/WARNING/ERROR/CRITICAL (兼容别名 FATAL -> CRITICAL)

除了普通的文本日志外，提醒的生命周期事件(创建、触发、送达、取消、过期)
另外以 JSONL 格式写入 <log_file>_events.jsonl，每行一个事件，便于事后对账:
    {"timestamp": "...", "event_type": "REMINDER_STATE", "data": {...}}

使用：先调用 setup_logging 配置日志，然后 logger.info(...) 写普通日志，log_event(...) 写事件
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | "
    "{name}:{function}:{line} - {message}"
)

EVENT_FORMAT = "{message}"

_LEVEL_ALIAS = {"FATAL": "CRITICAL"}


def _normalize_level(level: Union[str, LogLevel]) -> str:
    return _LEVEL_ALIAS.get(str(level).upper(), str(level).upper())


def _is_event(record: dict) -> bool:
    return "event_type" in record["extra"]


def _is_text(record: dict) -> bool:
    return "event_type" not in record["extra"]


def _file_handler(
    path: Path,
    *,
    level: str,
    retention: str,
    fmt: str = FILE_FORMAT,
    record_filter=_is_text,
) -> dict:
    return {
        "sink": path,
        "level": level,
        "format": fmt,
        "filter": record_filter,
        "rotation": "10 MB",
        "retention": retention,
        "compression": "zip",
        "encoding": "utf-8",
    }


def setup_logging(
    log_level: Union[str, LogLevel],
    log_file: Union[str, Path],
    console_level: Union[str, LogLevel] = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_level = _normalize_level(log_level)
    console_lv = _normalize_level(console_level)

    # 投递失败、数据丢失等事件单独落盘，保留更久
    error_log_file = log_file.with_name(f"{log_file.stem}_error{log_file.suffix}")
    events_log_file = log_file.with_name(f"{log_file.stem}_events.jsonl")

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": console_lv,
                "format": CONSOLE_FORMAT,
                "filter": _is_text,
                "colorize": True,
            },
            _file_handler(log_file, level=file_level, retention="30 days"),
            _file_handler(error_log_file, level="ERROR", retention="90 days"),
            _file_handler(
                events_log_file,
                level="INFO",
                retention="90 days",
                fmt=EVENT_FORMAT,
                record_filter=_is_event,
            ),
        ]
    )


def log_event(event_type: str, data: dict[str, Any]) -> None:
    """记录一个结构化事件，只写入事件日志，不出现在控制台和普通日志中"""
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "data": data,
    }
    logger.bind(event_type=event_type).info(json.dumps(entry, ensure_ascii=False, default=str))


__all__ = ["setup_logging", "log_event", "logger"]
