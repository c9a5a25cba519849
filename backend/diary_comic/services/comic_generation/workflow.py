"""
漫画生成工作流

固定阶段顺序，每个阶段成功是下一阶段的前提：
1. 积分预检
2. 角色归属校验
3. 故事分析（一次模型调用）
4. 创建漫画与全部 pending 场景
5. 逐个渲染场景（拼接参考图 -> 处理提示词 -> 渲染 -> 保存 -> 标记完成）
6. 全部场景完成后扣除积分
7. 标记漫画完成

前三个阶段不写任何数据。任一场景失败即整体失败，不扣积分。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.config import settings
from ...core.constants import ProgressConstants, ProgressStep, get_format_profile
from ...exceptions import (
    ComicAppException,
    DeductionFailure,
    GenerationCancelledError,
    ImageSynthesisError,
    InsufficientCreditsError,
    SceneRenderFailure,
)
from ...models.comic import Comic
from ...schemas.comic import (
    ComicSceneResponse,
    GenerateComicRequest,
    GenerationResult,
    SceneCharacter,
)
from ...utils.exception_helpers import get_safe_error_message, log_exception
from ...utils.identity_utils import validate_user_id
from ..character_compositor import CharacterCompositor
from ..comic_persistence import ComicPersistence
from ..credit_service import CreditLedgerService, RelatedEntity
from ..image_generation import ImageStorage, ImageSynthesisService, RenderParams
from ..prompt_processor import PromptProcessor
from ..scene_analysis import StoryAnalyzer
from .progress import ProgressEvent, ProgressSink, iterate_until_done
from .workflow_base import GenerationWorkflowBase

logger = logging.getLogger(__name__)


@dataclass
class SceneJob:
    """单个场景的渲染任务"""
    scene_id: str
    order: int
    description: str
    characters: List[SceneCharacter]
    extras: dict = field(default_factory=dict)


class ComicGenerationWorkflow(GenerationWorkflowBase):
    """
    漫画生成工作流

    使用方式：
    ```python
    workflow = ComicGenerationWorkflow(...)
    # 同步执行
    result = await workflow.execute()

    # 流式执行
    async for event in workflow.execute_with_progress():
        yield sse_data(event.to_dict())
    ```
    """

    def __init__(
        self,
        session: AsyncSession,
        request: GenerateComicRequest,
        user_id: str,
        ledger: CreditLedgerService,
        analyzer: StoryAnalyzer,
        compositor: CharacterCompositor,
        prompt_processor: PromptProcessor,
        synthesizer: ImageSynthesisService,
        storage: ImageStorage,
        persistence: Optional[ComicPersistence] = None,
        sink: Optional[ProgressSink] = None,
        render_concurrency: Optional[int] = None,
    ):
        super().__init__(sink)
        self.session = session
        self.request = request
        self.user_id = user_id
        self.ledger = ledger
        self.analyzer = analyzer
        self.compositor = compositor
        self.prompt_processor = prompt_processor
        self.synthesizer = synthesizer
        self.storage = storage
        self.persistence = persistence or ComicPersistence(session)
        self.render_concurrency = max(1, render_concurrency or settings.scene_render_concurrency)

        self.profile = get_format_profile(request.format)
        self.layout_mode = request.layout_mode or self.profile.default_layout
        self.comic_id: Optional[str] = None
        self._title: Optional[str] = None
        self._db_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # 主流程
    # ------------------------------------------------------------------
    async def _run_generation(self, streaming: bool) -> AsyncIterator[ProgressEvent]:
        fine_progress = self._wants_fine_progress(streaming)
        try:
            # 0. 用户标识（同时作为存储目录名）
            validate_user_id(self.user_id)

            # 1. 积分预检
            yield self._event(ProgressStep.CHECKING, "正在检查用户余额...", ProgressConstants.CREDIT_CHECK)
            check = await self.ledger.check(self.user_id, self.profile.credit_cost)
            if not check.ok:
                raise InsufficientCreditsError(check.required, check.current_balance)

            # 2. 角色校验
            yield self._event(ProgressStep.CHECKING, "正在验证角色信息...", ProgressConstants.CHARACTER_VALIDATION)
            characters = await self.persistence.validate_user_characters(
                self.user_id, self.request.character_ids
            )
            snapshots = [SceneCharacter(**c.to_snapshot()) for c in characters]

            # 3. 故事分析
            yield self._event(ProgressStep.ANALYZING, "正在分析故事...", ProgressConstants.ANALYSIS)
            analysis = await self.analyzer.analyze(
                self.request.story, characters, self.request.format, style=self.request.style
            )
            self._title = analysis.title

            # 4. 保存漫画与场景
            yield self._event(ProgressStep.GENERATING_SCENES, "正在保存场景...", ProgressConstants.ANALYSIS_DONE)
            comic = await self.persistence.create_comic_with_scenes(
                user_id=self.user_id,
                story=self.request.story,
                style=self.request.style,
                comic_format=self.request.format,
                layout_mode=self.layout_mode,
                title=analysis.title,
                scenes=analysis.scenes,
                characters=snapshots,
                extras=analysis.extras,
            )
            self.comic_id = comic.id
            jobs = self._build_jobs(comic)
            yield self._event(
                ProgressStep.GENERATING_SCENES,
                f"已创建 {len(jobs)} 个场景",
                ProgressConstants.COMIC_CREATED,
            )

            # 5. 渲染场景
            async for event in self._render_scenes(jobs, fine_progress):
                yield event

            # 6. 扣除积分
            yield self._event(ProgressStep.FINALIZING, "正在扣除积分...", ProgressConstants.DEDUCTION)
            await self._deduct_credits()

            # 7. 完成
            comic = await self.persistence.complete_comic(self.comic_id)
            result = self._build_result(comic)
            self._set_final_result(result)
            yield self._event(
                ProgressStep.COMPLETED,
                "漫画生成完成",
                ProgressConstants.DONE,
                event_type="complete",
                result=result.model_dump(mode="json"),
            )

        except asyncio.CancelledError:
            logger.warning("漫画生成已取消: user=%s comic=%s", self.user_id, self.comic_id)
            if self.comic_id:
                cancelled = GenerationCancelledError("漫画生成", self.comic_id)
                await asyncio.shield(self._fail_comic(cancelled.message))
            raise
        except Exception as exc:
            log_exception(
                exc,
                "漫画生成",
                logger_instance=logger,
                include_traceback=not isinstance(exc, ComicAppException),
                user_id=self.user_id,
                comic_id=self.comic_id,
            )
            if self.comic_id:
                await self._fail_comic(get_safe_error_message(exc, "漫画生成失败"))
            raise

    def _event(
        self,
        step: ProgressStep,
        message: str,
        progress: float,
        current_scene: Optional[int] = None,
        scene_progress: Optional[int] = None,
        event_type: str = "progress",
        result: Optional[dict] = None,
    ) -> ProgressEvent:
        return ProgressEvent(
            step=step,
            message=message,
            progress=int(progress),
            current_scene=current_scene,
            total_scenes=self.profile.scene_count if current_scene is not None else None,
            scene_progress=scene_progress,
            event_type=event_type,
            result=result,
        )

    def _build_jobs(self, comic: Comic) -> List[SceneJob]:
        return [
            SceneJob(
                scene_id=scene.id,
                order=scene.scene_order,
                description=scene.scenario_description,
                characters=[SceneCharacter(**c) for c in scene.characters or []],
                extras=dict(scene.render_extras or {}),
            )
            for scene in comic.scenes
        ]

    def _build_result(self, comic: Comic) -> GenerationResult:
        return GenerationResult(
            comic_id=comic.id,
            title=comic.title,
            status=comic.status,
            scenes=[ComicSceneResponse.model_validate(scene) for scene in comic.scenes],
        )

    # ------------------------------------------------------------------
    # 场景渲染
    # ------------------------------------------------------------------
    def _scene_slice(self, order: int) -> tuple:
        """场景 k（从1开始）占用的整体进度区间"""
        total = self.profile.scene_count
        span = ProgressConstants.RENDER_SPAN
        start = ProgressConstants.RENDER_START + (order - 1) * span / total
        end = ProgressConstants.RENDER_START + order * span / total
        return start, end

    async def _render_scenes(
        self,
        jobs: Sequence[SceneJob],
        fine_progress: bool,
    ) -> AsyncIterator[ProgressEvent]:
        """
        渲染全部场景

        渲染在独立任务中执行，进度通过内部队列回到生成器；
        任务失败时异常在生成器中重新抛出。
        """
        events: "asyncio.Queue[ProgressEvent]" = asyncio.Queue()
        runner = asyncio.ensure_future(self._run_render_jobs(jobs, events, fine_progress))
        async for event in iterate_until_done(events, runner):
            yield event

    async def _run_render_jobs(
        self,
        jobs: Sequence[SceneJob],
        events: "asyncio.Queue[ProgressEvent]",
        fine_progress: bool,
    ) -> None:
        if self.render_concurrency == 1:
            for job in jobs:
                await self._render_scene(job, events, fine_progress)
            return

        semaphore = asyncio.Semaphore(self.render_concurrency)

        async def worker(job: SceneJob) -> None:
            async with semaphore:
                await self._render_scene(job, events, fine_progress)

        tasks = [asyncio.ensure_future(worker(job)) for job in jobs]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if task.exception() is not None:
                    raise task.exception()
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _render_scene(
        self,
        job: SceneJob,
        events: "asyncio.Queue[ProgressEvent]",
        fine_progress: bool,
    ) -> None:
        total = self.profile.scene_count
        start, end = self._scene_slice(job.order)

        async with self._db_lock:
            await self.persistence.mark_scene_processing(job.scene_id)
        events.put_nowait(self._event(
            ProgressStep.GENERATING_IMAGES,
            f"正在生成第 {job.order}/{total} 个场景...",
            start,
            current_scene=job.order,
            scene_progress=0,
        ))

        def on_progress(value: int) -> None:
            events.put_nowait(self._event(
                ProgressStep.GENERATING_IMAGES,
                f"第 {job.order}/{total} 个场景生成中 ({value}%)",
                start + (end - start) * value / 100,
                current_scene=job.order,
                scene_progress=value,
            ))

        try:
            composite = await self.compositor.composite(job.characters)
            processed = self.prompt_processor.build_final_prompt(
                job.description,
                job.characters,
                self.request.style,
                self.request.format,
                extras=job.extras,
            )
            source_url = await self.synthesizer.render(
                composite.reference_image,
                processed.text,
                RenderParams(),
                on_progress if fine_progress else None,
            )
            image_url = await self.storage.save(
                self.user_id, self.profile.storage_kind, job.scene_id, source_url
            )
        except asyncio.CancelledError:
            await asyncio.shield(self._mark_scene_failed(job, increment_retry=False))
            raise
        except ImageSynthesisError as exc:
            await self._mark_scene_failed(job)
            raise SceneRenderFailure(job.order, exc.reason) from exc
        except Exception:
            await self._mark_scene_failed(job)
            raise

        async with self._db_lock:
            await self.persistence.complete_scene(job.scene_id, image_url, processed.text)
        logger.info("场景渲染完成: comic=%s scene=%d/%d", self.comic_id, job.order, total)
        events.put_nowait(self._event(
            ProgressStep.GENERATING_IMAGES,
            f"第 {job.order}/{total} 个场景生成完成",
            end,
            current_scene=job.order,
            scene_progress=100,
        ))

    async def _mark_scene_failed(self, job: SceneJob, increment_retry: bool = True) -> None:
        async with self._db_lock:
            try:
                await self.persistence.mark_scene_failed(job.scene_id, increment_retry=increment_retry)
            except SQLAlchemyError as exc:
                log_exception(exc, "标记场景失败状态", logger_instance=logger, scene_id=job.scene_id)

    # ------------------------------------------------------------------
    # 收尾
    # ------------------------------------------------------------------
    async def _deduct_credits(self) -> None:
        """扣除积分，失败只记录日志，不回滚已生成的内容"""
        related = RelatedEntity(
            entity_type="comic",
            entity_id=self.comic_id,
            metadata={
                "comic_id": self.comic_id,
                "style": self.request.style,
                "format": self.request.format.value,
                "layout_mode": self.layout_mode.value,
            },
        )
        try:
            await self.ledger.deduct(
                self.user_id,
                self.profile.credit_cost,
                description=f"生成漫画 - {self._title or '无标题'}",
                related_entity=related,
            )
        except DeductionFailure as exc:
            log_exception(
                exc,
                "扣除积分",
                logger_instance=logger,
                include_traceback=False,
                user_id=self.user_id,
                comic_id=self.comic_id,
                amount=self.profile.credit_cost,
            )

    async def _fail_comic(self, reason: str) -> None:
        try:
            await self.session.rollback()
            await self.persistence.fail_comic(self.comic_id, reason)
        except SQLAlchemyError as exc:
            log_exception(exc, "标记漫画失败状态", logger_instance=logger, comic_id=self.comic_id)


__all__ = ["ComicGenerationWorkflow", "SceneJob"]
