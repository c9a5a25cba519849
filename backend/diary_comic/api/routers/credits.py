"""
积分API路由

积分只在漫画生成完成时扣除，这里只提供查询。
"""

from fastapi import APIRouter, Depends, Query

from ...core.dependencies import get_credit_service, get_current_user_id
from ...schemas.credit import (
    CreditBalanceResponse,
    CreditHistoryResponse,
    CreditTransactionResponse,
)
from ...services.credit_service import CreditLedgerService

router = APIRouter(prefix="/credits", tags=["Credits"])


@router.get("/balance", response_model=CreditBalanceResponse)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_credit_service),
) -> CreditBalanceResponse:
    """获取当前余额"""
    balance = await ledger.get_balance(user_id)
    return CreditBalanceResponse(user_id=user_id, balance=balance)


@router.get("/history", response_model=CreditHistoryResponse)
async def get_history(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    ledger: CreditLedgerService = Depends(get_credit_service),
) -> CreditHistoryResponse:
    """获取积分流水，最新的在前"""
    transactions = await ledger.list_transactions(user_id, limit=limit)
    items = [CreditTransactionResponse.model_validate(t) for t in transactions]
    return CreditHistoryResponse(transactions=items, total=len(items))
