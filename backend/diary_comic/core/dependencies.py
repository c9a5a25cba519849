"""
依赖注入模块

用户身份由上游网关通过 X-User-Id 请求头传入，本服务不做登录认证。
各服务统一在这里组装，路由只声明依赖。
"""

import logging
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.session import AsyncSessionLocal, get_session
from ..exceptions import InvalidParameterError
from ..services.character_compositor import CharacterCompositor
from ..services.comic_generation import SceneRetryService
from ..services.comic_persistence import ComicPersistence
from ..services.credit_service import CreditLedgerService
from ..services.image_generation import ImageStorage, ImageSynthesisService
from ..services.name_resolver import get_name_resolver
from ..services.prompt_processor import PromptProcessor
from ..services.scene_analysis import StoryAnalyzer
from ..utils.identity_utils import validate_user_id
from .config import settings

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """
    读取当前用户ID

    Raises:
        InvalidParameterError: 请求头缺失、为空或格式非法
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise InvalidParameterError("缺少用户身份", "X-User-Id")
    return validate_user_id(user_id)


def get_session_factory() -> async_sessionmaker:
    """
    获取会话工厂（依赖注入）

    流式接口的生成器在依赖退出后仍在运行，需要在生成器内部自行创建会话。
    """
    return AsyncSessionLocal


def get_story_analyzer() -> StoryAnalyzer:
    return StoryAnalyzer()


def get_prompt_processor() -> PromptProcessor:
    return PromptProcessor(get_name_resolver(settings.name_match_strategy))


def get_character_compositor() -> CharacterCompositor:
    return CharacterCompositor(
        spacing=settings.compositor_spacing,
        background=settings.compositor_background,
        direction=settings.compositor_direction,
    )


def get_image_synthesizer() -> ImageSynthesisService:
    """
    获取图片生成服务（依赖注入）

    供应商类型与连接参数来自全局配置。
    """
    return ImageSynthesisService.from_settings(settings)


def get_image_storage() -> ImageStorage:
    return ImageStorage()


async def get_credit_service(
    session: AsyncSession = Depends(get_session),
) -> CreditLedgerService:
    return CreditLedgerService(session)


async def get_comic_persistence(
    session: AsyncSession = Depends(get_session),
) -> ComicPersistence:
    return ComicPersistence(session)


async def get_scene_retry_service(
    session: AsyncSession = Depends(get_session),
    compositor: CharacterCompositor = Depends(get_character_compositor),
    prompt_processor: PromptProcessor = Depends(get_prompt_processor),
    synthesizer: ImageSynthesisService = Depends(get_image_synthesizer),
    storage: ImageStorage = Depends(get_image_storage),
) -> SceneRetryService:
    """
    获取SceneRetryService实例（依赖注入）

    Example:
        ```python
        @router.post("/comic-scenes/{scene_id}/retry")
        async def retry_scene(
            scene_id: str,
            service: SceneRetryService = Depends(get_scene_retry_service),
        ):
            return await service.retry_scene(scene_id, None, user_id)
        ```
    """
    return SceneRetryService(
        session,
        compositor=compositor,
        prompt_processor=prompt_processor,
        synthesizer=synthesizer,
        storage=storage,
    )
