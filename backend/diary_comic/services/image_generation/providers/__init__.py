"""
图片生成供应商

导入具体供应商模块以触发工厂注册。
"""

from .base import BaseImageProvider
from .factory import ImageProviderFactory
from .flux_kontext import FluxKontextProvider
from .openai_compatible import OpenAICompatibleProvider

__all__ = [
    "BaseImageProvider",
    "ImageProviderFactory",
    "FluxKontextProvider",
    "OpenAICompatibleProvider",
]
