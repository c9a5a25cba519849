"""
图片生成服务

封装场景渲染与多图合成两种调用方式：
- render: 参考图 + 提示词（提交/轮询型供应商）
- compose: 提示词 + 多张原始图片（聊天型供应商，一次调用）

所有调用都经过 ImageRequestQueue 控制并发。
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from ...core.config import Settings, settings as default_settings
from ...exceptions import ImageSynthesisError
from ..queue import ImageRequestQueue, RequestQueue
from .fs_utils import async_exists, async_read_bytes, resolve_under_root
from .image_sources import _local_relative_path, to_data_url
from .providers import BaseImageProvider, ImageProviderFactory
from .schemas import ProgressCallback, ProviderConfig, RenderParams

logger = logging.getLogger(__name__)


class ImageSynthesisService:
    """图片生成服务

    职责：
    - 统一参考图格式（本地图片转数据URL）
    - 并发控制
    - 把传输层异常统一转换为 ImageSynthesisError
    """

    def __init__(
        self,
        provider: BaseImageProvider,
        compose_provider: Optional[BaseImageProvider] = None,
        queue: Optional[RequestQueue] = None,
    ):
        self.provider = provider
        self.compose_provider = compose_provider
        self._queue = queue

    @property
    def queue(self) -> RequestQueue:
        if self._queue is None:
            self._queue = ImageRequestQueue.get_instance()
        return self._queue

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ImageSynthesisService":
        """根据全局配置创建服务"""
        config = config or default_settings
        provider_type = config.image_provider
        if provider_type == "flux_kontext":
            render_config = ProviderConfig(
                api_key=config.flux_api_key,
                base_url=config.flux_base_url,
                model_name=config.flux_endpoint,
            )
        else:
            render_config = ProviderConfig(
                api_key=config.compose_api_key,
                base_url=config.compose_api_base_url,
                model_name=config.compose_model,
            )
        render_config.poll_interval = config.image_poll_interval
        render_config.poll_backoff = config.image_poll_backoff
        render_config.poll_max_interval = config.image_poll_max_interval
        render_config.poll_timeout = config.image_poll_timeout

        provider = ImageProviderFactory.get_provider(provider_type, render_config)
        if provider is None:
            raise ValueError(f"不支持的图片供应商类型: {provider_type}")

        compose_provider = None
        if config.compose_api_base_url:
            compose_provider = ImageProviderFactory.get_provider(
                "openai_compatible",
                ProviderConfig(
                    api_key=config.compose_api_key,
                    base_url=config.compose_api_base_url,
                    model_name=config.compose_model,
                ),
            )
        return cls(provider=provider, compose_provider=compose_provider)

    @property
    def supports_compose(self) -> bool:
        return self.compose_provider is not None and self.compose_provider.supports_compose()

    async def render(
        self,
        reference_image: Optional[str],
        prompt: str,
        params: Optional[RenderParams] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        渲染一张图片

        Args:
            reference_image: 参考图（数据URL、HTTP URL或本服务图片地址，可为空）
            prompt: 最终提示词
            params: 渲染参数
            on_progress: 进度回调（0-100）

        Returns:
            生成图片的地址

        Raises:
            ImageSynthesisError: 生成失败、超时或没有返回图片
        """
        params = params or RenderParams()
        reference = await self._normalize_reference(reference_image)

        async with self.queue.request_slot():
            try:
                image_url = await self.provider.render(prompt, reference, params, on_progress)
            except (httpx.HTTPError, asyncio.TimeoutError) as exc:
                raise ImageSynthesisError(f"{type(exc).__name__}: {exc}", self.provider.PROVIDER_TYPE) from exc

        if not image_url:
            raise ImageSynthesisError("没有返回图片", self.provider.PROVIDER_TYPE)
        return image_url

    async def compose(
        self,
        prompt: str,
        images: List[str],
        params: Optional[RenderParams] = None,
    ) -> str:
        """提示词 + 多张原始图片直接合成"""
        if not self.supports_compose:
            raise ImageSynthesisError("未配置多图合成接口")
        params = params or RenderParams()
        normalized = [await self._normalize_reference(image) for image in images]

        async with self.queue.request_slot():
            try:
                image_url = await self.compose_provider.compose(prompt, [i for i in normalized if i], params)
            except (httpx.HTTPError, asyncio.TimeoutError) as exc:
                raise ImageSynthesisError(
                    f"{type(exc).__name__}: {exc}", self.compose_provider.PROVIDER_TYPE
                ) from exc

        if not image_url:
            raise ImageSynthesisError("没有返回图片", self.compose_provider.PROVIDER_TYPE)
        return image_url

    async def _normalize_reference(self, reference_image: Optional[str]) -> Optional[str]:
        """本服务保存的图片外部供应商无法访问，转换为数据URL"""
        if not reference_image:
            return None
        relative = _local_relative_path(reference_image)
        if relative is None:
            return reference_image

        try:
            path = resolve_under_root(relative)
        except ValueError as exc:
            raise ImageSynthesisError(f"非法参考图路径: {reference_image}") from exc
        if not await async_exists(path):
            raise ImageSynthesisError(f"参考图不存在: {reference_image}")
        return to_data_url(await async_read_bytes(path))
