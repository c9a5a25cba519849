"""
积分账户与流水模型

余额永不为负，扣费只在漫画全部场景完成后记录。
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import Base
from .mixins import utcnow


class CreditAccount(Base):
    """用户积分账户"""

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_balance_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CreditAccount(user={self.user_id}, balance={self.balance})>"


class CreditTransaction(Base):
    """积分流水"""

    __tablename__ = "credit_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)  # deduction, refill
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # 扣费为负数
    description: Mapped[str] = mapped_column(Text(), nullable=False)
    related_entity_type: Mapped[Optional[str]] = mapped_column(String(30))
    related_entity_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    # "metadata" 为声明式保留属性名，这里映射到同名列
    extra_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    balance_before: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<CreditTransaction(user={self.user_id}, type={self.transaction_type}, amount={self.amount})>"
