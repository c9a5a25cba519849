"""
进度事件与进度输出

ProgressEvent 是漫画生成过程中唯一的进度载体。
工作流把每个事件交给注入的 ProgressSink，流式接口同时把事件逐个 yield 给调用方。
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from ...core.constants import ProgressStep

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """进度事件

    progress 为 0-100 的整体进度；并行渲染时事件可能乱序到达，
    current_scene 标明事件所属的场景序号，供客户端重排。
    """
    step: ProgressStep
    message: str
    progress: int
    current_scene: Optional[int] = None
    total_scenes: Optional[int] = None
    scene_progress: Optional[int] = None
    event_type: str = "progress"
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.event_type,
            "step": self.step.value,
            "message": self.message,
            "progress": self.progress,
        }
        if self.current_scene is not None:
            data["current_scene"] = self.current_scene
            data["total_scenes"] = self.total_scenes
        if self.scene_progress is not None:
            data["scene_progress"] = self.scene_progress
        if self.result is not None:
            data["data"] = self.result
        return data


class ProgressSink(ABC):
    """进度输出接口"""

    @abstractmethod
    async def publish(self, event: ProgressEvent) -> None:
        """发布一个事件，不得阻塞生成流程"""


class NullProgressSink(ProgressSink):
    """丢弃所有事件"""

    async def publish(self, event: ProgressEvent) -> None:
        return None


ProgressHandler = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class CallbackProgressSink(ProgressSink):
    """把事件转交给回调函数（同步或异步）"""

    def __init__(self, callback: ProgressHandler):
        self._callback = callback

    async def publish(self, event: ProgressEvent) -> None:
        try:
            result = self._callback(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("进度回调执行失败: step=%s error=%s", event.step.value, exc)


class QueueProgressSink(ProgressSink):
    """
    有界队列输出

    队列满时丢弃最旧的事件再放入新事件，生产方永不阻塞。
    """

    def __init__(self, maxsize: int = 64):
        if maxsize < 1:
            raise ValueError("队列容量必须大于0")
        self.queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    async def publish(self, event: ProgressEvent) -> None:
        while True:
            try:
                self.queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except asyncio.QueueEmpty:
                    pass

    def drain(self) -> List[ProgressEvent]:
        """取出当前缓冲的全部事件"""
        events = []
        while True:
            try:
                events.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return events


async def iterate_until_done(
    queue: "asyncio.Queue[ProgressEvent]",
    task: "asyncio.Future",
) -> AsyncIterator[ProgressEvent]:
    """
    边等待任务边转发队列中的事件

    任务结束后先取空队列，再通过 task.result() 抛出任务中的异常。
    调用方提前退出（如客户端断开）时取消任务并等待其收尾。
    """
    getter: Optional[asyncio.Future] = None
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue
            getter.cancel()
            while not queue.empty():
                yield queue.get_nowait()
            task.result()
            return
    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


__all__ = [
    "ProgressEvent",
    "ProgressSink",
    "NullProgressSink",
    "CallbackProgressSink",
    "QueueProgressSink",
    "iterate_until_done",
]
