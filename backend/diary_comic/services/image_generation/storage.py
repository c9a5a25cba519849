"""
生成图片存储

把供应商返回的图片（HTTP URL或数据URL）下载后保存到本地图片根目录：

    users/{user_id}/{comics|posters}/{scene_id}.png
    users/{user_id}/{comics|posters}/{scene_id}_retry_{毫秒时间戳}.png   （重新生成）

对外访问地址为 {IMAGE_PUBLIC_BASE}/users/...，由图片路由提供文件服务。
"""

import logging
import re
import time
import uuid
from typing import Optional

from ...core.config import settings
from ...exceptions import ImageSynthesisError
from .fs_utils import (
    async_mkdir,
    async_rename,
    async_unlink,
    async_write_bytes,
    resolve_under_root,
)
from .image_sources import ImageSourceError, fetch_image_bytes

logger = logging.getLogger(__name__)

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_-]+$")
STORAGE_KINDS = ("comics", "posters")


def _check_segment(value: str, name: str) -> str:
    if not value or not _SAFE_SEGMENT.match(value):
        raise ImageSynthesisError(f"非法的存储路径片段 {name}: {value!r}")
    return value


def build_relative_path(user_id: str, kind: str, scene_id: str, retry_stamp: Optional[int] = None) -> str:
    """构建图片相对路径"""
    if kind not in STORAGE_KINDS:
        raise ImageSynthesisError(f"未知的存储目录: {kind}")
    _check_segment(user_id, "user_id")
    _check_segment(scene_id, "scene_id")
    file_name = f"{scene_id}_retry_{retry_stamp}.png" if retry_stamp is not None else f"{scene_id}.png"
    return f"users/{user_id}/{kind}/{file_name}"


class ImageStorage:
    """生成图片的本地存储"""

    def __init__(self, public_base: Optional[str] = None):
        self.public_base = (public_base or settings.image_public_base).rstrip("/")

    def public_url(self, relative_path: str) -> str:
        return f"{self.public_base}/{relative_path}"

    async def save(
        self,
        user_id: str,
        kind: str,
        scene_id: str,
        source_url: str,
        retry: bool = False,
    ) -> str:
        """
        下载并保存图片

        Args:
            user_id: 用户ID
            kind: comics 或 posters
            scene_id: 场景ID
            source_url: 供应商返回的图片地址
            retry: 是否为重新生成（文件名追加时间戳，不覆盖原图）

        Returns:
            图片的公开访问地址

        Raises:
            ImageSynthesisError: 下载或写入失败
        """
        retry_stamp = int(time.time() * 1000) if retry else None
        relative_path = build_relative_path(user_id, kind, scene_id, retry_stamp)

        try:
            content = await fetch_image_bytes(source_url)
        except ImageSourceError as exc:
            raise ImageSynthesisError(f"下载生成图片失败: {exc}") from exc

        try:
            file_path = resolve_under_root(relative_path)
        except ValueError as exc:
            raise ImageSynthesisError(f"非法图片路径: {relative_path}") from exc

        await async_mkdir(file_path.parent, parents=True, exist_ok=True)

        # 原子写入：先写临时文件，再重命名
        temp_path = file_path.parent / f".tmp_{uuid.uuid4().hex[:12]}.png"
        try:
            await async_write_bytes(temp_path, content)
            await async_rename(temp_path, file_path)
        except OSError as exc:
            await async_unlink(temp_path, missing_ok=True)
            raise ImageSynthesisError(f"保存图片失败: {exc}") from exc

        logger.info("图片已保存: %s (%d bytes)", relative_path, len(content))
        return self.public_url(relative_path)
