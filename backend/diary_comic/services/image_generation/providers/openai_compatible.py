"""
OpenAI兼容图片生成供应商（聊天API模式）

通过 /v1/chat/completions 的图片输入能力实现：
- render: 单张参考图 + 提示词
- compose: 多张原始图片 + 提示词，一次调用直接合成，无任务/轮询

返回内容中的图片可能以以下形式出现，按顺序提取：
1. message.images[].image_url.url
2. 正文中的数据URL
3. Markdown 图片链接 / 纯图片URL
"""

import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseImageProvider
from .factory import ImageProviderFactory
from ....exceptions import ImageSynthesisError
from ..schemas import ProgressCallback, RenderParams

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash-image-preview"

DATA_URL_PATTERN = re.compile(r"data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]+")
MARKDOWN_URL_PATTERN = re.compile(r"!\[.*?\]\((https?://[^\s\)]+)\)")
PLAIN_URL_PATTERN = re.compile(r"(https?://[^\s\"'\)]+\.(?:png|jpg|jpeg|gif|webp))", re.IGNORECASE)


def fix_base_url(base_url: str) -> str:
    """
    修复base_url中可能存在的问题

    - 移除尾部斜杠
    - 修复双斜杠问题
    """
    if not base_url:
        return base_url

    fixed_url = base_url.rstrip('/')

    url_without_protocol = fixed_url.replace('https://', '').replace('http://', '')
    if '//' in url_without_protocol:
        fixed_url = fixed_url.replace('//v1', '/v1').replace('//chat', '/chat')
        logger.warning("base_url包含双斜杠，已自动修复: %s -> %s", base_url, fixed_url)

    return fixed_url


def build_chat_endpoint(base_url: str) -> str:
    """
    构建聊天API端点

    - http://api.example.com -> http://api.example.com/v1/chat/completions
    - http://api.example.com/v1 -> http://api.example.com/v1/chat/completions
    - http://api.example.com/v1/chat/completions -> 保持不变
    """
    base = fix_base_url(base_url)

    if base.endswith('/chat/completions'):
        return base
    if base.endswith('/v1'):
        return f"{base}/chat/completions"
    return f"{base}/v1/chat/completions"


def extract_image_urls(message: Dict[str, Any]) -> List[str]:
    """从聊天响应消息中提取图片地址"""
    urls: List[str] = []

    for image in message.get("images") or []:
        url = (image.get("image_url") or {}).get("url")
        if url:
            urls.append(url)
    if urls:
        return urls

    content = message.get("content") or ""
    if isinstance(content, list):
        # 部分网关以分段形式返回
        for part in content:
            if part.get("type") == "image_url":
                url = (part.get("image_url") or {}).get("url")
                if url:
                    urls.append(url)
        content = " ".join(part.get("text", "") for part in content if part.get("type") == "text")
    if urls:
        return urls

    urls.extend(DATA_URL_PATTERN.findall(content))
    urls.extend(MARKDOWN_URL_PATTERN.findall(content))
    if not urls:
        urls.extend(PLAIN_URL_PATTERN.findall(content))
    return urls


@ImageProviderFactory.register("openai_compatible")
class OpenAICompatibleProvider(BaseImageProvider):
    """OpenAI兼容接口供应商"""

    DISPLAY_NAME = "OpenAI 兼容接口"

    def supports_compose(self) -> bool:
        return True

    async def render(
        self,
        prompt: str,
        reference_image: Optional[str],
        params: RenderParams,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        images = [reference_image] if reference_image else []
        await self._notify(on_progress, 10)
        url = await self._chat_with_images(prompt, images, params)
        await self._notify(on_progress, 100)
        return url

    async def compose(
        self,
        prompt: str,
        images: List[str],
        params: RenderParams,
    ) -> str:
        if not images:
            raise ImageSynthesisError("多图合成至少需要一张输入图片", self.PROVIDER_TYPE)
        return await self._chat_with_images(prompt, images, params)

    def _build_message_content(self, prompt: str, images: List[str], params: RenderParams) -> List[Dict[str, Any]]:
        content: List[Dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": image}} for image in images
        ]
        instruction = prompt
        if images:
            instruction = (
                f"Use the provided {len(images)} image(s) as character and style reference. "
                "Keep each character's appearance consistent.\n\n" + prompt
            )
        if params.aspect_ratio:
            instruction = f"{instruction}\n\nAspect ratio: {params.aspect_ratio}"
        content.append({"type": "text", "text": instruction})
        return content

    async def _chat_with_images(self, prompt: str, images: List[str], params: RenderParams) -> str:
        if not self.config.base_url:
            raise ImageSynthesisError("未配置多图合成接口地址", self.PROVIDER_TYPE)

        api_url = build_chat_endpoint(self.config.base_url)
        request_body = {
            "model": self.config.model_name or DEFAULT_MODEL,
            "messages": [{"role": "user", "content": self._build_message_content(prompt, images, params)}],
            "modalities": ["image", "text"],
        }
        logger.info("聊天API图片请求: url=%s, model=%s, 输入图片=%d张", api_url, request_body["model"], len(images))

        async with self.create_http_client() as client:
            try:
                response = await client.post(api_url, headers=self.get_auth_headers(), json=request_body)
            except httpx.HTTPError as exc:
                raise ImageSynthesisError(f"{type(exc).__name__}: {exc}", self.PROVIDER_TYPE) from exc

        if response.status_code != 200:
            error_msg = f"API错误({response.status_code})"
            try:
                error_data = response.json()
                if isinstance(error_data.get("error"), dict):
                    error_msg = error_data["error"].get("message", error_msg)
            except ValueError:
                logger.error("聊天API错误响应(非JSON): %s", response.text[:500])
            raise ImageSynthesisError(error_msg, self.PROVIDER_TYPE)

        result = response.json()
        try:
            message = result["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ImageSynthesisError("响应缺少 choices/message", self.PROVIDER_TYPE) from exc

        urls = extract_image_urls(message)
        if not urls:
            raise ImageSynthesisError("响应中没有图片", self.PROVIDER_TYPE)
        logger.info("聊天API提取到图片数量: %d", len(urls))
        return urls[0]
