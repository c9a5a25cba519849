"""
图片生成模块

- providers: 供应商实现（flux_kontext / openai_compatible）
- service: 渲染与多图合成入口
- storage: 生成图片的本地保存
"""

from .http_client import HTTPClientManager
from .providers import ImageProviderFactory
from .schemas import ProgressCallback, ProviderConfig, RenderParams
from .service import ImageSynthesisService
from .storage import ImageStorage

__all__ = [
    "HTTPClientManager",
    "ImageProviderFactory",
    "ImageSynthesisService",
    "ImageStorage",
    "ProgressCallback",
    "ProviderConfig",
    "RenderParams",
]
