"""
图片生成供应商基类

定义供应商接口规范，所有具体供应商都需要实现这些方法。
"""

import inspect
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

import httpx

from ....exceptions import ImageSynthesisError
from ..schemas import ProgressCallback, ProviderConfig, RenderParams

logger = logging.getLogger(__name__)


class BaseImageProvider(ABC):
    """
    图片生成供应商抽象基类

    所有具体供应商需要实现：
    - render: 参考图 + 提示词 -> 图片URL

    可选重写：
    - compose: 提示词 + 多张原始图片的一次性合成（无任务/轮询）
    """

    # 供应商标识符，由工厂注册时设置
    PROVIDER_TYPE: str = ""

    # 供应商显示名称
    DISPLAY_NAME: str = ""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @asynccontextmanager
    async def create_http_client(self, timeout: Optional[float] = None) -> AsyncIterator[httpx.AsyncClient]:
        """
        创建配置好的HTTP客户端

        代理配置：
        - 默认使用系统代理（trust_env=True）
        - extra_params.proxy 指定代理
        - extra_params.disable_proxy=True 禁用代理
        """
        extra_params = self.config.extra_params or {}
        proxy_url = extra_params.get("proxy")
        disable_proxy = extra_params.get("disable_proxy", False)

        async with httpx.AsyncClient(
            timeout=timeout or self.config.request_timeout,
            proxy=proxy_url,
            trust_env=not disable_proxy,
        ) as client:
            yield client

    def get_auth_headers(
        self,
        content_type: str = "application/json",
        accept: str = "application/json",
    ) -> Dict[str, str]:
        """获取认证请求头（Bearer），供应商可重写"""
        headers = {"Accept": accept}
        if content_type:
            headers["Content-Type"] = content_type
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    @abstractmethod
    async def render(
        self,
        prompt: str,
        reference_image: Optional[str],
        params: RenderParams,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        渲染图片

        Args:
            prompt: 最终提示词
            reference_image: 参考图（数据URL或HTTP URL，可为空）
            params: 渲染参数
            on_progress: 进度回调（0-100）

        Returns:
            生成图片的URL（HTTP URL或数据URL）

        Raises:
            ImageSynthesisError: 生成失败或超时
        """

    def supports_compose(self) -> bool:
        return False

    async def compose(
        self,
        prompt: str,
        images: List[str],
        params: RenderParams,
    ) -> str:
        """多图合成（默认不支持）"""
        raise ImageSynthesisError("当前供应商不支持多图合成", self.PROVIDER_TYPE)

    @staticmethod
    async def _notify(on_progress: Optional[ProgressCallback], value: int) -> None:
        """调用进度回调，回调异常只记录不影响渲染"""
        if on_progress is None:
            return
        try:
            result = on_progress(max(0, min(100, int(value))))
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("进度回调执行失败: %s", exc)
