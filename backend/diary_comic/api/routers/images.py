"""
图片文件服务

GET /images/{path}: 返回已保存的生成图片，路径限制在图片根目录内。
"""

import logging

from fastapi import APIRouter
from fastapi.responses import FileResponse

from ...exceptions import InvalidParameterError, ResourceNotFoundError
from ...services.image_generation.fs_utils import async_exists, resolve_under_root

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Images"])

_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


@router.get("/images/{file_path:path}")
async def get_image(file_path: str) -> FileResponse:
    """获取图片文件"""
    try:
        path = resolve_under_root(file_path)
    except ValueError:
        logger.warning("拒绝越界的图片路径: %s", file_path)
        raise InvalidParameterError("非法的图片路径", "path")

    media_type = _MEDIA_TYPES.get(path.suffix.lower())
    if media_type is None or not await async_exists(path) or not path.is_file():
        raise ResourceNotFoundError("图片", file_path)

    return FileResponse(path, media_type=media_type)
