"""
单场景重新生成

只重做一个场景：确定场景角色、重新拼接参考图、处理（新）描述、渲染并保存。
新描述中的 <角色名> 按漫画的角色名单重新解析，角色顺序沿用生成请求中的顺序。
漫画整体状态与其他场景不受影响，也不扣除积分。
"""

import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ...core.constants import ComicFormat, get_format_profile
from ...exceptions import ImageSynthesisError, SceneRenderFailure
from ...models.comic import Comic, ComicScene
from ...schemas.comic import SceneCharacter
from ..character_compositor import CharacterCompositor
from ..comic_persistence import ComicPersistence
from ..image_generation import ImageStorage, ImageSynthesisService, RenderParams
from ..prompt_processor import PromptProcessor

logger = logging.getLogger(__name__)


class SceneRetryService:
    """场景重试服务"""

    def __init__(
        self,
        session: AsyncSession,
        compositor: CharacterCompositor,
        prompt_processor: PromptProcessor,
        synthesizer: ImageSynthesisService,
        storage: ImageStorage,
        persistence: Optional[ComicPersistence] = None,
    ):
        self.session = session
        self.compositor = compositor
        self.prompt_processor = prompt_processor
        self.synthesizer = synthesizer
        self.storage = storage
        self.persistence = persistence or ComicPersistence(session)

    async def retry_scene(
        self,
        scene_id: str,
        new_description: Optional[str],
        user_id: str,
    ) -> ComicScene:
        """
        重新生成单个场景

        Args:
            scene_id: 场景ID
            new_description: 新的场景描述，为空时沿用原描述
            user_id: 当前用户

        Returns:
            更新后的场景

        Raises:
            ResourceNotFoundError: 场景不存在
            PermissionDeniedError: 场景不属于该用户
            CompositingFailure: 参考图拼接失败
            SceneRenderFailure: 渲染或保存失败
        """
        scene = await self.persistence.get_scene_for_retry(scene_id, user_id)
        comic = scene.comic
        comic_format = ComicFormat(comic.format)
        style = comic.style
        order = scene.scene_order
        new_description = (new_description or "").strip() or None
        description = new_description or scene.scenario_description
        characters = self._scene_characters(scene, comic, new_description)
        extras = dict(scene.render_extras or {})

        await self.persistence.begin_scene_retry(scene_id)
        logger.info("开始重新生成场景: scene=%s comic=%s order=%d", scene_id, comic.id, order)

        try:
            composite = await self.compositor.composite(characters)
            processed = self.prompt_processor.build_final_prompt(
                description, characters, style, comic_format, extras=extras
            )
            source_url = await self.synthesizer.render(
                composite.reference_image, processed.text, RenderParams()
            )
            image_url = await self.storage.save(
                user_id,
                get_format_profile(comic_format).storage_kind,
                scene_id,
                source_url,
                retry=True,
            )
        except ImageSynthesisError as exc:
            await self.persistence.mark_scene_failed(scene_id, increment_retry=False)
            raise SceneRenderFailure(order, exc.reason) from exc
        except Exception:
            await self.persistence.mark_scene_failed(scene_id, increment_retry=False)
            raise

        updated = await self.persistence.complete_scene(
            scene_id,
            image_url,
            processed.text,
            new_description=new_description,
            characters=characters if new_description else None,
        )
        logger.info("场景重新生成完成: scene=%s url=%s", scene_id, image_url)
        return updated

    def _scene_characters(
        self,
        scene: ComicScene,
        comic: Comic,
        new_description: Optional[str],
    ) -> List[SceneCharacter]:
        """
        确定重试场景的角色

        沿用原描述时使用场景快照；提供新描述时按漫画角色名单重新解析，
        保持请求中的角色顺序（即拼接顺序）。
        """
        stored = [SceneCharacter(**c) for c in scene.characters or []]
        if not new_description:
            return stored

        roster = [SceneCharacter(**c) for c in comic.characters or []]
        resolved = set(self.prompt_processor.resolver.resolve_ids(new_description, roster))
        return [c for c in roster if c.id in resolved]


__all__ = ["SceneRetryService"]
