"""
漫画生成API路由

- POST /comics/generate: SSE 流式生成漫画
- GET /comics: 当前用户的漫画列表
- GET /comics/{comic_id}: 漫画详情（含有序场景）
- POST /comic-scenes/{scene_id}/retry: 重新生成单个场景
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...core.config import settings
from ...core.dependencies import (
    get_character_compositor,
    get_comic_persistence,
    get_current_user_id,
    get_image_storage,
    get_image_synthesizer,
    get_prompt_processor,
    get_scene_retry_service,
    get_session_factory,
    get_story_analyzer,
)
from ...exceptions import ComicAppException
from ...schemas.comic import (
    ComicResponse,
    ComicSceneResponse,
    ComicSummary,
    GenerateComicRequest,
    RetrySceneRequest,
)
from ...services.character_compositor import CharacterCompositor
from ...services.comic_generation import (
    ComicGenerationWorkflow,
    QueueProgressSink,
    SceneRetryService,
    iterate_until_done,
)
from ...services.comic_persistence import ComicPersistence
from ...services.credit_service import CreditLedgerService
from ...services.image_generation import ImageStorage, ImageSynthesisService
from ...services.prompt_processor import PromptProcessor
from ...services.scene_analysis import StoryAnalyzer
from ...utils.exception_helpers import get_safe_error_message, log_exception
from ...utils.sse_helpers import create_sse_response, sse_data

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Comics"])


@router.post("/comics/generate")
async def generate_comic(
    request: GenerateComicRequest,
    user_id: str = Depends(get_current_user_id),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    analyzer: StoryAnalyzer = Depends(get_story_analyzer),
    compositor: CharacterCompositor = Depends(get_character_compositor),
    prompt_processor: PromptProcessor = Depends(get_prompt_processor),
    synthesizer: ImageSynthesisService = Depends(get_image_synthesizer),
    storage: ImageStorage = Depends(get_image_storage),
):
    """
    流式生成漫画

    每一帧为 `data: <json>`：
    - type=progress: 进度更新（step / message / progress，渲染阶段带 current_scene）
    - type=complete: 生成完成，data 为漫画与场景
    - type=error: 生成失败，error 为面向用户的错误信息
    """
    logger.info(
        "收到漫画生成请求: user=%s format=%s style=%s characters=%d",
        user_id, request.format.value, request.style, len(request.character_ids),
    )

    async def event_generator():
        sink = QueueProgressSink(settings.progress_buffer_size)
        async with session_factory() as session:
            workflow = ComicGenerationWorkflow(
                session=session,
                request=request,
                user_id=user_id,
                ledger=CreditLedgerService(session),
                analyzer=analyzer,
                compositor=compositor,
                prompt_processor=prompt_processor,
                synthesizer=synthesizer,
                storage=storage,
                sink=sink,
            )
            task = asyncio.ensure_future(workflow.execute())
            try:
                async for event in iterate_until_done(sink.queue, task):
                    yield sse_data(event.to_dict())
            except ComicAppException as exc:
                yield sse_data({
                    "type": "error",
                    "error": exc.message,
                    "status_code": exc.status_code,
                    "comic_id": workflow.comic_id,
                })
            except Exception as exc:
                log_exception(exc, "漫画生成接口", logger_instance=logger, user_id=user_id)
                yield sse_data({
                    "type": "error",
                    "error": get_safe_error_message(exc, "漫画生成失败，请稍后重试"),
                    "status_code": 500,
                    "comic_id": workflow.comic_id,
                })

    return create_sse_response(event_generator())


@router.get("/comics", response_model=List[ComicSummary])
async def list_comics(
    user_id: str = Depends(get_current_user_id),
    persistence: ComicPersistence = Depends(get_comic_persistence),
) -> List[ComicSummary]:
    """获取当前用户的漫画列表"""
    comics = await persistence.list_comics(user_id)
    return [ComicSummary.model_validate(comic) for comic in comics]


@router.get("/comics/{comic_id}", response_model=ComicResponse)
async def get_comic(
    comic_id: str,
    user_id: str = Depends(get_current_user_id),
    persistence: ComicPersistence = Depends(get_comic_persistence),
) -> ComicResponse:
    """获取漫画详情，场景按顺序排列"""
    comic = await persistence.get_comic(comic_id, user_id)
    return ComicResponse.model_validate(comic)


@router.post("/comic-scenes/{scene_id}/retry", response_model=ComicSceneResponse)
async def retry_scene(
    scene_id: str,
    payload: Optional[RetrySceneRequest] = None,
    user_id: str = Depends(get_current_user_id),
    service: SceneRetryService = Depends(get_scene_retry_service),
) -> ComicSceneResponse:
    """重新生成单个场景，不扣除积分"""
    description = payload.description if payload else None
    logger.info("收到场景重试请求: user=%s scene=%s", user_id, scene_id)
    scene = await service.retry_scene(scene_id, description, user_id)
    return ComicSceneResponse.model_validate(scene)
