"""
Flux Kontext 图片生成供应商

API工作流程：
1. POST {base_url}/{endpoint} 提交任务（x-key 认证），返回 id 与 polling_url
2. 轮询 polling_url（或 {base_url}/get_result?id=...）直到终止状态
3. Ready 状态下 result.sample 即为生成图片地址

轮询带截止时间与指数退避：首个间隔 poll_interval，每次乘以 poll_backoff，
不超过 poll_max_interval；总耗时超过 poll_timeout 即判定失败。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import BaseImageProvider
from .factory import ImageProviderFactory
from ....exceptions import ImageSynthesisError
from ..image_sources import is_data_url
from ..schemas import ProgressCallback, RenderParams

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.bfl.ai/v1"
DEFAULT_ENDPOINT = "flux-kontext-pro"

# 状态 -> 进度百分比
STATUS_PROGRESS = {
    "pending": 10,
    "queued": 10,
    "processing": 50,
    "ready": 100,
}
FAILED_STATUSES = {"error", "failed", "request moderated", "content moderated", "task not found"}


@dataclass
class FluxTask:
    """已提交的渲染任务"""
    task_id: str
    polling_url: Optional[str] = None


@ImageProviderFactory.register("flux_kontext")
class FluxKontextProvider(BaseImageProvider):
    """Flux Kontext 供应商（提交 + 轮询）"""

    DISPLAY_NAME = "Flux Kontext"

    def get_auth_headers(
        self,
        content_type: str = "application/json",
        accept: str = "application/json",
    ) -> Dict[str, str]:
        headers = {"Accept": accept, "x-key": self.config.api_key or ""}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def render(
        self,
        prompt: str,
        reference_image: Optional[str],
        params: RenderParams,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        if not self.config.api_key:
            raise ImageSynthesisError("未配置 Flux API Key", self.PROVIDER_TYPE)

        async with self.create_http_client() as client:
            task = await self._submit(client, prompt, reference_image, params)
            logger.info("Flux任务已提交: id=%s", task.task_id)
            await self._notify(on_progress, 5)
            image_url = await self._poll_for_result(client, task, on_progress)

        logger.info("Flux任务完成: id=%s", task.task_id)
        return image_url

    def _build_payload(
        self,
        prompt: str,
        reference_image: Optional[str],
        params: RenderParams,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "aspect_ratio": params.aspect_ratio,
            "output_format": params.output_format,
            "prompt_upsampling": params.prompt_upsampling,
            "safety_tolerance": params.safety_tolerance,
        }
        if reference_image:
            # 数据URL只保留Base64部分，HTTP URL原样传递
            payload["input_image"] = (
                reference_image.split(",", 1)[1] if is_data_url(reference_image) else reference_image
            )
        if params.seed is not None:
            payload["seed"] = params.seed
        if params.width:
            payload["width"] = params.width
        if params.height:
            payload["height"] = params.height
        return payload

    async def _submit(
        self,
        client: httpx.AsyncClient,
        prompt: str,
        reference_image: Optional[str],
        params: RenderParams,
    ) -> FluxTask:
        endpoint = self.config.model_name or DEFAULT_ENDPOINT
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await client.post(
                url,
                headers=self.get_auth_headers(),
                json=self._build_payload(prompt, reference_image, params),
            )
        except httpx.HTTPError as exc:
            raise ImageSynthesisError(f"提交任务失败: {type(exc).__name__}: {exc}", self.PROVIDER_TYPE) from exc

        if response.status_code != 200:
            raise ImageSynthesisError(
                f"提交任务失败: HTTP {response.status_code} {response.text[:300]}",
                self.PROVIDER_TYPE,
            )

        data = response.json()
        task_id = data.get("id")
        if not task_id:
            raise ImageSynthesisError("提交任务响应缺少任务ID", self.PROVIDER_TYPE)
        return FluxTask(task_id=task_id, polling_url=data.get("polling_url"))

    async def _poll_for_result(
        self,
        client: httpx.AsyncClient,
        task: FluxTask,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        """轮询任务直到终止状态或超过截止时间"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.poll_timeout
        interval = self.config.poll_interval
        poll_url = task.polling_url or f"{self.base_url}/get_result"
        query = None if task.polling_url else {"id": task.task_id}
        last_progress = -1

        while True:
            data = await self._fetch_status(client, poll_url, query, task)
            if data is not None:
                status = str(data.get("status", "")).strip().lower()

                if status in FAILED_STATUSES:
                    detail = data.get("details") or data.get("error") or status
                    raise ImageSynthesisError(f"任务失败: {detail}", self.PROVIDER_TYPE)

                if status == "ready":
                    sample = (data.get("result") or {}).get("sample")
                    if not sample:
                        raise ImageSynthesisError("任务完成但没有返回图片", self.PROVIDER_TYPE)
                    await self._notify(on_progress, 100)
                    return sample

                progress = STATUS_PROGRESS.get(status)
                if progress is not None and progress != last_progress:
                    last_progress = progress
                    await self._notify(on_progress, progress)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ImageSynthesisError(
                    f"生成超时（超过{self.config.poll_timeout:g}秒）", self.PROVIDER_TYPE
                )
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * self.config.poll_backoff, self.config.poll_max_interval)

    async def _fetch_status(
        self,
        client: httpx.AsyncClient,
        poll_url: str,
        query: Optional[Dict[str, str]],
        task: FluxTask,
    ) -> Optional[Dict[str, Any]]:
        """
        查询一次任务状态

        网络错误、429 与 5xx 视为暂时性错误，返回 None 继续轮询；
        其他非 200 响应直接失败。
        """
        try:
            response = await client.get(
                poll_url,
                params=query,
                headers=self.get_auth_headers(content_type=""),
            )
        except httpx.TransportError as exc:
            logger.warning("Flux轮询网络错误（将重试）: id=%s, %s", task.task_id, exc)
            return None

        if response.status_code == 200:
            return response.json()
        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("Flux轮询暂时失败（将重试）: id=%s, HTTP %d", task.task_id, response.status_code)
            return None
        raise ImageSynthesisError(
            f"查询任务失败: HTTP {response.status_code} {response.text[:300]}",
            self.PROVIDER_TYPE,
        )
