"""
SQLAlchemy 模型通用字段 Mixin

收敛多个模型重复的时间戳字段定义，避免并行维护漂移。
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampsMixin:
    """通用时间戳字段（创建/更新时间）

    使用 Python 端默认值，写入后属性不会过期，异步会话中可直接读取。
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )
