"""请求队列"""

from .base import RequestQueue
from .image_queue import ImageRequestQueue

__all__ = ["RequestQueue", "ImageRequestQueue"]
