"""积分 Schema"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class CreditBalanceResponse(BaseModel):
    """余额响应"""

    user_id: str
    balance: int


class CreditTransactionResponse(BaseModel):
    """积分流水响应"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_type: str
    amount: int
    description: str
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    balance_before: int
    balance_after: int
    created_at: Optional[datetime] = None


class CreditHistoryResponse(BaseModel):
    """积分流水列表"""

    transactions: List[CreditTransactionResponse]
    total: int
