"""
漫画持久化服务

封装漫画/场景的状态流转。每次状态变化后立即提交，
保证生成过程中其他请求（如查询漫画详情）能读到最新进度。

所有状态写入都按ID重新查询实体，不依赖调用方持有的ORM对象，
会话回滚后实体过期也不会触发隐式懒加载。
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.constants import ComicFormat, ComicStatus, LayoutMode, SceneStatus
from ..exceptions import (
    PermissionDeniedError,
    ResourceNotFoundError,
    UnauthorizedCharacterError,
)
from ..models.character import Character
from ..models.comic import Comic, ComicScene
from ..repositories.character_repository import CharacterRepository
from ..repositories.comic_repository import ComicRepository, ComicSceneRepository
from ..schemas.comic import SceneCharacter
from .scene_analysis import SceneDescription

logger = logging.getLogger(__name__)


def _scene_extras(description: SceneDescription, extras: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    values = {"visual_elements": description.visual_elements, **extras}
    kept = {key: value for key, value in values.items() if value}
    return kept or None


class ComicPersistence:
    """漫画与场景的持久化操作"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.character_repo = CharacterRepository(session)
        self.comic_repo = ComicRepository(session)
        self.scene_repo = ComicSceneRepository(session)

    # ------------------------------------------------------------------
    # 角色
    # ------------------------------------------------------------------
    async def validate_user_characters(self, user_id: str, character_ids: Sequence[str]) -> List[Character]:
        """
        校验角色归属

        Returns:
            按传入顺序排列的角色

        Raises:
            UnauthorizedCharacterError: 存在不属于该用户或不存在的角色
        """
        characters = await self.character_repo.get_by_ids(character_ids)
        owned = [c for c in characters if c.user_id == user_id]
        owned_ids = {c.id for c in owned}
        invalid = [cid for cid in character_ids if cid not in owned_ids]
        if invalid:
            logger.warning("角色归属校验失败: user=%s invalid=%s", user_id, invalid)
            raise UnauthorizedCharacterError(invalid)
        return owned

    # ------------------------------------------------------------------
    # 漫画
    # ------------------------------------------------------------------
    async def create_comic_with_scenes(
        self,
        user_id: str,
        story: str,
        style: str,
        comic_format: ComicFormat,
        layout_mode: LayoutMode,
        title: Optional[str],
        scenes: Sequence[SceneDescription],
        characters: Sequence[SceneCharacter],
        extras: Optional[Dict[str, Any]] = None,
    ) -> Comic:
        """
        创建漫画与全部 pending 场景

        场景角色按请求中的角色顺序保存快照，该顺序即参考图拼接顺序。
        漫画保存完整的角色名单，分析阶段的附加字段按场景保存，供单场景重试复用。
        """
        extras = extras or {}
        comic = await self.comic_repo.add(
            Comic(
                user_id=user_id,
                title=title,
                content=story,
                style=style,
                format=comic_format.value,
                layout_mode=layout_mode.value,
                scene_ids=[],
                characters=[c.model_dump() for c in characters],
                status=ComicStatus.PROCESSING.value,
            )
        )

        scene_models = []
        for description in scenes:
            scene_characters = [
                c.model_dump() for c in characters if c.id in description.character_ids
            ]
            scene_models.append(
                ComicScene(
                    comic_id=comic.id,
                    scene_order=description.order,
                    content=description.title or description.description,
                    scenario_description=description.description,
                    mood=description.mood,
                    quote=description.quote,
                    characters=scene_characters,
                    render_extras=_scene_extras(description, extras),
                    status=SceneStatus.PENDING.value,
                    retry_count=0,
                )
            )
        await self.scene_repo.bulk_add(scene_models)

        comic.scene_ids = [scene.id for scene in scene_models]
        await self.session.commit()
        logger.info("漫画已创建: comic=%s format=%s scenes=%d", comic.id, comic.format, len(scene_models))
        return await self._require_comic(comic.id)

    async def get_comic(self, comic_id: str, user_id: Optional[str] = None) -> Comic:
        """
        获取漫画（含有序场景）

        Raises:
            ResourceNotFoundError: 漫画不存在
            PermissionDeniedError: 漫画不属于该用户
        """
        comic = await self._require_comic(comic_id)
        if user_id is not None and comic.user_id != user_id:
            raise PermissionDeniedError("无权访问该漫画")
        return comic

    async def list_comics(self, user_id: str) -> List[Comic]:
        return await self.comic_repo.list_by_user(user_id)

    async def complete_comic(self, comic_id: str) -> Comic:
        comic = await self._require_comic(comic_id)
        comic.status = ComicStatus.COMPLETED.value
        comic.error_message = None
        await self.session.commit()
        logger.info("漫画生成完成: comic=%s", comic_id)
        return comic

    async def fail_comic(self, comic_id: str, error: Optional[str] = None) -> None:
        comic = await self._require_comic(comic_id)
        comic.status = ComicStatus.FAILED.value
        comic.error_message = error
        await self.session.commit()
        logger.warning("漫画生成失败: comic=%s error=%s", comic_id, error)

    # ------------------------------------------------------------------
    # 场景
    # ------------------------------------------------------------------
    async def mark_scene_processing(self, scene_id: str) -> ComicScene:
        scene = await self._require_scene(scene_id)
        scene.status = SceneStatus.PROCESSING.value
        await self.session.commit()
        return scene

    async def complete_scene(
        self,
        scene_id: str,
        image_url: str,
        prompt: str,
        new_description: Optional[str] = None,
        characters: Optional[List[SceneCharacter]] = None,
    ) -> ComicScene:
        """保存生成结果并标记完成，characters 不为 None 时同时替换场景角色快照"""
        scene = await self._require_scene(scene_id)
        if characters is not None:
            scene.characters = [c.model_dump() for c in characters]
        await self.scene_repo.update_fields(
            scene,
            image_url=image_url,
            image_prompt=prompt,
            scenario_description=new_description,
            status=SceneStatus.COMPLETED.value,
        )
        await self.session.commit()
        return scene

    async def mark_scene_failed(self, scene_id: str, increment_retry: bool = True) -> ComicScene:
        scene = await self._require_scene(scene_id)
        scene.status = SceneStatus.FAILED.value
        if increment_retry:
            scene.retry_count = (scene.retry_count or 0) + 1
        await self.session.commit()
        return scene

    async def begin_scene_retry(self, scene_id: str) -> ComicScene:
        """重试开始：retry_count + 1 并标记 processing"""
        scene = await self._require_scene(scene_id)
        scene.retry_count = (scene.retry_count or 0) + 1
        scene.status = SceneStatus.PROCESSING.value
        await self.session.commit()
        return scene

    async def get_scene_for_retry(self, scene_id: str, user_id: str) -> ComicScene:
        """
        获取待重试的场景并校验归属

        Raises:
            ResourceNotFoundError: 场景不存在
            PermissionDeniedError: 场景所属漫画不属于该用户
        """
        scene = await self.scene_repo.get_with_comic(scene_id)
        if scene is None:
            raise ResourceNotFoundError("场景", scene_id)
        if scene.comic is None or scene.comic.user_id != user_id:
            raise PermissionDeniedError("无权重新生成该场景")
        return scene

    async def _require_comic(self, comic_id: str) -> Comic:
        comic = await self.comic_repo.get_by_id(comic_id)
        if comic is None:
            raise ResourceNotFoundError("漫画", comic_id)
        return comic

    async def _require_scene(self, scene_id: str) -> ComicScene:
        scene = await self.scene_repo.get_by_id(scene_id)
        if scene is None:
            raise ResourceNotFoundError("场景", scene_id)
        return scene
