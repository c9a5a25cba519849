"""
共享HTTP客户端

头像下载、渲染结果下载等非供应商请求统一复用同一个 httpx.AsyncClient。
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HTTPClientManager:
    """
    HTTP客户端管理器

    提供全局共享的httpx.AsyncClient，支持连接池复用。
    使用双重检查锁定模式确保只创建一次。
    """
    _client: Optional[httpx.AsyncClient] = None
    _lock: Optional[asyncio.Lock] = None

    @classmethod
    def _get_lock(cls) -> asyncio.Lock:
        """获取锁实例（必须在事件循环运行时调用）"""
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        """获取共享的HTTP客户端（懒加载）"""
        if cls._client is not None:
            return cls._client

        async with cls._get_lock():
            if cls._client is None:
                cls._client = httpx.AsyncClient(
                    timeout=60.0,
                    follow_redirects=True,
                    limits=httpx.Limits(
                        max_keepalive_connections=20,
                        max_connections=50,
                        keepalive_expiry=30.0,
                    ),
                )
                logger.info("HTTP客户端已创建，连接池配置: max_connections=50, keepalive=20")
        return cls._client

    @classmethod
    async def close_client(cls) -> None:
        """关闭HTTP客户端（应用关闭时调用）"""
        if cls._client is not None:
            await cls._client.aclose()
            cls._client = None
            logger.info("HTTP客户端已关闭")
