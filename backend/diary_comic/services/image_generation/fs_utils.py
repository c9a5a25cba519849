"""图片存储文件系统工具：异步 Path I/O + 目录入口（支持热更新）。"""

from __future__ import annotations

import asyncio
from pathlib import Path

from ...core.config import settings


def get_images_root() -> Path:
    return settings.generated_images_dir


def resolve_under_root(relative_path: str) -> Path:
    """把相对路径解析到图片根目录下，越界时抛出 ValueError"""
    root = get_images_root().resolve()
    candidate = (root / relative_path).resolve()
    candidate.relative_to(root)
    return candidate


# 异步文件操作（薄封装）：统一基于 asyncio.to_thread，避免阻塞事件循环
async def async_exists(path: Path) -> bool:
    return await asyncio.to_thread(path.exists)


async def async_mkdir(path: Path, *, parents: bool = False, exist_ok: bool = False) -> None:
    await asyncio.to_thread(path.mkdir, parents=parents, exist_ok=exist_ok)


async def async_read_bytes(path: Path) -> bytes:
    return await asyncio.to_thread(path.read_bytes)


async def async_write_bytes(path: Path, data: bytes) -> None:
    await asyncio.to_thread(path.write_bytes, data)


async def async_rename(src: Path, dst: Path) -> None:
    await asyncio.to_thread(src.replace, dst)


async def async_unlink(path: Path, *, missing_ok: bool = False) -> None:
    await asyncio.to_thread(path.unlink, missing_ok=missing_ok)
