"""集中导出 ORM 模型，确保 SQLAlchemy 元数据在初始化时被正确加载。"""

from .character import Character
from .comic import Comic, ComicScene
from .credit import CreditAccount, CreditTransaction

__all__ = [
    "Character",
    "Comic",
    "ComicScene",
    "CreditAccount",
    "CreditTransaction",
]
