"""
角色仓储

负责角色的只读查询。
"""

from typing import List, Sequence

from sqlalchemy import select

from .base import BaseRepository
from ..models.character import Character


class CharacterRepository(BaseRepository[Character]):
    """角色仓储"""

    model = Character

    async def get_by_ids(self, character_ids: Sequence[str]) -> List[Character]:
        """按ID批量获取角色，返回顺序与传入顺序一致（不存在的ID被跳过）"""
        if not character_ids:
            return []
        result = await self.session.execute(
            select(Character).where(Character.id.in_(list(character_ids)))
        )
        by_id = {c.id: c for c in result.scalars().all()}
        return [by_id[cid] for cid in character_ids if cid in by_id]
