"""
漫画生成模块

- progress: 进度事件与输出
- workflow_base: 同步/流式统一执行入口
- workflow: 完整生成工作流
- retry: 单场景重新生成
"""

from .progress import (
    CallbackProgressSink,
    NullProgressSink,
    ProgressEvent,
    ProgressSink,
    QueueProgressSink,
    iterate_until_done,
)
from .retry import SceneRetryService
from .workflow import ComicGenerationWorkflow
from .workflow_base import GenerationWorkflowBase

__all__ = [
    # 进度
    "ProgressEvent",
    "ProgressSink",
    "NullProgressSink",
    "CallbackProgressSink",
    "QueueProgressSink",
    "iterate_until_done",
    # 工作流
    "GenerationWorkflowBase",
    "ComicGenerationWorkflow",
    "SceneRetryService",
]
