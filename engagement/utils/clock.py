"""
时间工具

数据库中统一保存不带时区的UTC时间
"""
from datetime import datetime, timezone


def utc_now() -> datetime:
    """当前UTC时间（naive）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_between(start: datetime, end: datetime) -> float:
    """两个时间点之间的天数（可为小数）"""
    return (end - start).total_seconds() / 86400.0
