"""
工作流基类

提供统一的执行入口，减少同步与流式逻辑重复。
子类只需实现 _run_generation，逐个 yield 进度事件；
基类负责把事件发布到 ProgressSink。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

from .progress import NullProgressSink, ProgressEvent, ProgressSink


class GenerationWorkflowBase(ABC):
    """通用生成工作流基类"""

    def __init__(self, sink: Optional[ProgressSink] = None) -> None:
        self._final_result: Optional[Any] = None
        self.sink: ProgressSink = sink or NullProgressSink()

    async def execute(self) -> Any:
        """同步执行工作流，进度只发布到 sink"""
        async for event in self._run_generation(streaming=False):
            await self.sink.publish(event)
        return self._final_result

    async def execute_with_progress(self) -> AsyncIterator[ProgressEvent]:
        """流式执行工作流并返回进度"""
        async for event in self._run_generation(streaming=True):
            await self.sink.publish(event)
            yield event

    @property
    def final_result(self) -> Optional[Any]:
        return self._final_result

    def _set_final_result(self, result: Any) -> None:
        """记录最终结果"""
        self._final_result = result

    def _wants_fine_progress(self, streaming: bool) -> bool:
        """是否需要渲染过程中的细粒度进度"""
        return streaming or not isinstance(self.sink, NullProgressSink)

    @abstractmethod
    async def _run_generation(self, streaming: bool) -> AsyncIterator[ProgressEvent]:
        """执行工作流（子类实现）"""


__all__ = ["GenerationWorkflowBase"]
