import unicodedata
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

__all__ = ["InvalidScheduleError", "now_utc", "resolve_scheduled_at", "to_iso_utc", "parse_iso_utc",
           "to_user_local", "format_user_local", "humanize_until", "normalize_text"]


class InvalidScheduleError(ValueError):
    """提醒请求非法: 日期/时间/时区格式错误等"""


def now_utc() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def _load_zone(tz_name: str) -> ZoneInfo:
    if not tz_name or not isinstance(tz_name, str):
        raise InvalidScheduleError("缺少时区")
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleError(f"未知的时区: {tz_name}") from e


def resolve_scheduled_at(date_str: str, time_str: str, tz_name: str) -> datetime:
    """将用户本地的日期 + 时间 + 时区解析为 UTC 时刻

    date_str: "YYYY-MM-DD"; time_str: "HH:MM" 或 "HH:MM:SS"
    夏令时跳过的本地时间按 fold=0 处理(ZoneInfo 的默认行为)
    """
    zone = _load_zone(tz_name)
    if not isinstance(date_str, str) or not isinstance(time_str, str):
        raise InvalidScheduleError("日期和时间必须是字符串")

    local_str = f"{date_str.strip()} {time_str.strip()}"
    for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%d %H:%M:%S"):
        try:
            naive = datetime.strptime(local_str, fmt)
            break
        except ValueError:
            continue
    else:
        raise InvalidScheduleError(f"无法解析的日期时间: {local_str}")

    return naive.replace(tzinfo=zone).astimezone(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        raise ValueError("拒绝序列化不带时区的时间")
    return dt.astimezone(timezone.utc).isoformat()


def parse_iso_utc(raw: str) -> datetime:
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        # 不带时区的本地时间在恢复时无法还原，直接拒绝
        raise ValueError(f"时间缺少时区偏移: {raw}")
    return dt.astimezone(timezone.utc)


def to_user_local(utc_dt: datetime, user_tz: str) -> datetime:
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)
    return utc_dt.astimezone(ZoneInfo(user_tz))


def format_user_local(utc_dt: datetime, user_tz: str, fmt: str = "%Y-%m-%d %H:%M") -> str:
    return to_user_local(utc_dt, user_tz).strftime(fmt)


def humanize_until(target: datetime, now: datetime) -> str:
    """距离目标时间的粗略描述，例如 "in 5 minutes" """
    minutes = int((target - now).total_seconds() // 60)
    if minutes < 1:
        return "in a moment"
    if minutes < 60:
        return f"in {minutes} minute{'s' if minutes > 1 else ''}"
    if minutes < 1440:
        return f"in {minutes // 60}h"
    days = minutes // 1440
    return f"in {days} day{'s' if days > 1 else ''}"


def normalize_text(text: str) -> str:
    """去掉重音符号并转为小写，便于关键词匹配"""
    decomposed = unicodedata.normalize("NFD", text.strip().lower())
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
