"""
漫画与场景仓储

负责 Comic / ComicScene 的数据访问操作。
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .base import BaseRepository
from ..models.comic import Comic, ComicScene


class ComicRepository(BaseRepository[Comic]):
    """漫画仓储"""

    model = Comic

    async def get_by_id(self, comic_id: str) -> Optional[Comic]:
        """获取漫画（连同有序场景）"""
        result = await self.session.execute(
            select(Comic)
            .where(Comic.id == comic_id)
            .options(selectinload(Comic.scenes))
        )
        return result.scalars().first()

    async def list_by_user(self, user_id: str) -> List[Comic]:
        """获取用户的所有漫画，最新的在前"""
        result = await self.session.execute(
            select(Comic)
            .where(Comic.user_id == user_id)
            .order_by(Comic.created_at.desc())
        )
        return list(result.scalars().all())


class ComicSceneRepository(BaseRepository[ComicScene]):
    """漫画场景仓储"""

    model = ComicScene

    async def get_by_id(self, scene_id: str) -> Optional[ComicScene]:
        return await self.get(id=scene_id)

    async def get_with_comic(self, scene_id: str) -> Optional[ComicScene]:
        """获取场景并预加载所属漫画，用于归属校验"""
        result = await self.session.execute(
            select(ComicScene)
            .where(ComicScene.id == scene_id)
            .options(selectinload(ComicScene.comic))
        )
        return result.scalars().first()
