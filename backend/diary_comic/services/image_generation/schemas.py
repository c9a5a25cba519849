"""
图片生成数据结构

渲染参数、供应商配置与进度回调类型。
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

# 进度回调：接收 0-100 的整数，可以是同步函数或协程函数
ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]


@dataclass
class RenderParams:
    """单次渲染参数"""
    aspect_ratio: str = "1:1"
    width: Optional[int] = None
    height: Optional[int] = None
    seed: Optional[int] = None
    output_format: str = "png"
    prompt_upsampling: bool = False
    safety_tolerance: int = 2


@dataclass
class ProviderConfig:
    """供应商连接配置"""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_name: Optional[str] = None
    request_timeout: float = 180.0
    poll_interval: float = 1.0
    poll_backoff: float = 1.5
    poll_max_interval: float = 8.0
    poll_timeout: float = 300.0
    extra_params: Dict[str, Any] = field(default_factory=dict)
