"""Repository层"""

from .base import BaseRepository
from .character_repository import CharacterRepository
from .comic_repository import ComicRepository, ComicSceneRepository
from .credit_repository import CreditRepository, CreditTransactionRepository

__all__ = [
    "BaseRepository",
    "CharacterRepository",
    "ComicRepository",
    "ComicSceneRepository",
    "CreditRepository",
    "CreditTransactionRepository",
]
