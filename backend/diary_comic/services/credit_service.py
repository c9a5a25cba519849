"""
积分账本服务

负责积分余额检查、扣费与充值，并为每次变动记录流水。

并发约束：
- 扣费是唯一需要跨任务互斥的操作（同一用户的两个漫画任务可能同时完成）
- 进程内按用户加 asyncio.Lock，数据库层再用条件更新（balance >= amount）兜底，
  多进程部署时依旧不会把余额扣成负数
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.constants import TransactionType
from ..exceptions import DeductionFailure, InvalidParameterError
from ..models.credit import CreditTransaction
from ..repositories.credit_repository import CreditRepository, CreditTransactionRepository

logger = logging.getLogger(__name__)


@dataclass
class CreditCheckResult:
    """余额检查结果"""
    ok: bool
    current_balance: int
    required: int


@dataclass
class DeductionResult:
    """扣费结果"""
    ok: bool
    new_balance: int
    transaction_id: Optional[str] = None


@dataclass
class RelatedEntity:
    """流水关联的业务实体（本系统中恒为 comic）"""
    entity_type: str
    entity_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class CreditLedgerService:
    """积分账本服务"""

    # 同一进程内按用户串行化扣费；锁无人持有或等待时自动回收
    _user_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = CreditRepository(session)
        self.transaction_repo = CreditTransactionRepository(session)

    @classmethod
    def _lock_for(cls, user_id: str) -> asyncio.Lock:
        lock = cls._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            cls._user_locks[user_id] = lock
        return lock

    async def get_balance(self, user_id: str) -> int:
        return await self.repo.get_balance(user_id)

    async def check(self, user_id: str, amount: int) -> CreditCheckResult:
        """检查余额是否足够，账户不存在视为余额 0"""
        balance = await self.repo.get_balance(user_id)
        return CreditCheckResult(ok=balance >= amount, current_balance=balance, required=amount)

    async def deduct(
        self,
        user_id: str,
        amount: int,
        description: str,
        related_entity: Optional[RelatedEntity] = None,
    ) -> DeductionResult:
        """
        原子扣费并记录流水

        Args:
            user_id: 用户ID
            amount: 扣除的积分（正数）
            description: 流水描述
            related_entity: 关联实体

        Returns:
            DeductionResult: 扣费后的余额与流水ID

        Raises:
            DeductionFailure: 余额不足或写库失败
        """
        if amount <= 0:
            raise InvalidParameterError("扣除积分必须为正数", "amount")

        async with self._lock_for(user_id):
            try:
                balance_before = await self.repo.get_balance(user_id)
                new_balance = await self.repo.decrement_if_sufficient(user_id, amount)
                if new_balance is None:
                    await self.session.rollback()
                    raise DeductionFailure(user_id, amount, f"余额不足（当前 {balance_before}）")

                transaction = await self.transaction_repo.add(
                    CreditTransaction(
                        user_id=user_id,
                        transaction_type=TransactionType.DEDUCTION.value,
                        amount=-amount,
                        description=description,
                        related_entity_type=related_entity.entity_type if related_entity else None,
                        related_entity_id=related_entity.entity_id if related_entity else None,
                        extra_metadata=dict(related_entity.metadata) if related_entity else None,
                        balance_before=balance_before,
                        balance_after=new_balance,
                    )
                )
                await self.session.commit()
            except SQLAlchemyError as exc:
                await self.session.rollback()
                raise DeductionFailure(user_id, amount, str(exc)) from exc

        logger.info(
            "积分扣除成功: user=%s amount=%d balance=%d -> %d",
            user_id, amount, balance_before, new_balance,
        )
        return DeductionResult(ok=True, new_balance=new_balance, transaction_id=transaction.id)

    async def grant(self, user_id: str, amount: int, description: str = "积分充值") -> int:
        """充值积分并记录 refill 流水，返回新余额"""
        if amount <= 0:
            raise InvalidParameterError("充值积分必须为正数", "amount")

        async with self._lock_for(user_id):
            balance_before = await self.repo.get_balance(user_id)
            new_balance = await self.repo.increment(user_id, amount)
            await self.transaction_repo.add(
                CreditTransaction(
                    user_id=user_id,
                    transaction_type=TransactionType.REFILL.value,
                    amount=amount,
                    description=description,
                    balance_before=balance_before,
                    balance_after=new_balance,
                )
            )
            await self.session.commit()

        logger.info("积分充值: user=%s amount=%d balance=%d", user_id, amount, new_balance)
        return new_balance

    async def list_transactions(self, user_id: str, limit: int = 50) -> list[CreditTransaction]:
        return await self.transaction_repo.list_by_user(user_id, limit=limit)
