"""
SSE (Server-Sent Events) 辅助工具

漫画生成接口使用无事件类型的 data 帧：每一帧是一个 JSON 对象，
客户端通过 type 字段区分 progress / complete / error。
"""

import json
from typing import Any, Dict


def sse_message(message: str) -> str:
    """
    发送简单文本消息（无事件类型）

    Args:
        message: 文本消息

    Returns:
        格式化的SSE消息字符串
    """
    return f"data: {message}\n\n"


def sse_data(payload: Dict[str, Any]) -> str:
    """
    把字典序列化为一帧 data 消息

    示例:
        >>> sse_data({"type": "progress", "progress": 10})
        'data: {"type": "progress", "progress": 10}\\n\\n'
    """
    return sse_message(json.dumps(payload, ensure_ascii=False, default=str))


# SSE响应标准头部
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_sse_response(generator):
    """
    创建标准的SSE流式响应

    Args:
        generator: 异步生成器，yield SSE帧字符串

    Returns:
        StreamingResponse: FastAPI流式响应对象
    """
    from fastapi.responses import StreamingResponse

    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
