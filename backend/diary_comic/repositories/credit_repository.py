"""
积分仓储

扣费使用条件更新（balance >= amount）实现比较并交换，
保证同一用户的并发扣费不会把余额扣成负数。
"""

from typing import List, Optional

from sqlalchemy import select, update

from .base import BaseRepository
from ..models.credit import CreditAccount, CreditTransaction


class CreditRepository(BaseRepository[CreditAccount]):
    """积分账户仓储"""

    model = CreditAccount

    async def get_balance(self, user_id: str) -> int:
        """读取当前余额，账户不存在视为 0"""
        result = await self.session.execute(
            select(CreditAccount.balance).where(CreditAccount.user_id == user_id)
        )
        balance = result.scalar()
        return balance or 0

    async def ensure_account(self, user_id: str) -> None:
        """账户不存在时创建空账户"""
        existing = await self.session.execute(
            select(CreditAccount.user_id).where(CreditAccount.user_id == user_id)
        )
        if existing.scalar() is None:
            await self.add(CreditAccount(user_id=user_id, balance=0))

    async def decrement_if_sufficient(self, user_id: str, amount: int) -> Optional[int]:
        """
        条件扣减余额

        Returns:
            扣减后的余额；余额不足或账户不存在时返回 None
        """
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
            .values(balance=CreditAccount.balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return None
        return await self.get_balance(user_id)

    async def increment(self, user_id: str, amount: int) -> int:
        """增加余额，返回增加后的余额"""
        await self.ensure_account(user_id)
        await self.session.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(balance=CreditAccount.balance + amount)
            .execution_options(synchronize_session=False)
        )
        return await self.get_balance(user_id)


class CreditTransactionRepository(BaseRepository[CreditTransaction]):
    """积分流水仓储"""

    model = CreditTransaction

    async def list_by_user(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        result = await self.session.execute(
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
