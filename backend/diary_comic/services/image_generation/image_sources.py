"""
图片来源读取

统一处理三种图片地址：
1. Base64 数据URL（data:image/png;base64,...）
2. 本服务保存的图片（以 IMAGE_PUBLIC_BASE 开头的相对地址）
3. 标准 HTTP(S) URL
"""

import base64
import binascii
import logging
from typing import Optional, Tuple

import httpx

from ...core.config import settings
from ...core.constants import ImageConstants
from .fs_utils import async_exists, async_read_bytes, resolve_under_root
from .http_client import HTTPClientManager

logger = logging.getLogger(__name__)


class ImageSourceError(Exception):
    """图片读取失败（由调用方转换为具体的业务异常）"""


def is_data_url(url: str) -> bool:
    return url.startswith("data:")


def parse_data_url(url: str) -> Tuple[str, bytes]:
    """解析数据URL，返回 (mime_type, 原始字节)"""
    try:
        header, b64_data = url.split(",", 1)
    except ValueError as exc:
        raise ImageSourceError("数据URL格式错误") from exc

    if len(b64_data) > ImageConstants.MAX_BASE64_SIZE:
        raise ImageSourceError(f"Base64图片数据过大: {len(b64_data)} bytes")

    mime_type = header[5:].split(";", 1)[0] or ImageConstants.DEFAULT_MIME_TYPE
    try:
        return mime_type, base64.b64decode(b64_data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageSourceError(f"解析Base64图片数据失败: {exc}") from exc


def to_data_url(data: bytes, mime_type: str = ImageConstants.DEFAULT_MIME_TYPE) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def _local_relative_path(url: str) -> Optional[str]:
    """本服务保存的图片地址 -> 相对图片根目录的路径"""
    prefix = settings.image_public_base.rstrip("/") + "/"
    if url.startswith(prefix):
        return url[len(prefix):]
    return None


async def fetch_image_bytes(url: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """
    读取图片字节

    Raises:
        ImageSourceError: 地址无效、下载失败或文件不存在
    """
    if not url:
        raise ImageSourceError("图片地址为空")

    if is_data_url(url):
        return parse_data_url(url)[1]

    relative = _local_relative_path(url)
    if relative is not None:
        try:
            path = resolve_under_root(relative)
        except ValueError as exc:
            raise ImageSourceError(f"非法图片路径: {url}") from exc
        if not await async_exists(path):
            raise ImageSourceError(f"图片文件不存在: {url}")
        return await async_read_bytes(path)

    if not url.startswith(("http://", "https://")):
        raise ImageSourceError(f"不支持的图片地址: {url[:100]}")

    http = client or await HTTPClientManager.get_client()
    try:
        response = await http.get(url)
    except httpx.HTTPError as exc:
        raise ImageSourceError(f"下载图片失败: {url}, {type(exc).__name__}: {exc}") from exc

    if response.status_code != 200:
        raise ImageSourceError(f"下载图片失败: {url}, status={response.status_code}")
    if not response.content:
        raise ImageSourceError(f"下载图片为空: {url}")
    return response.content
