"""
统一异常体系

提供业务逻辑层的异常定义，避免直接使用HTTPException。
所有异常都会被全局异常处理器捕获并转换为HTTP响应；
流式接口则在生成器内部捕获并转换为 error 事件。
"""

from typing import Optional


class ComicAppException(Exception):
    """
    应用基础异常类

    所有业务异常的基类，会被全局异常处理器捕获。

    Attributes:
        message: 错误消息（面向用户）
        status_code: HTTP状态码
        detail: 详细错误信息（可选，用于日志）
    """

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        detail: Optional[str] = None
    ):
        self.message = message
        self.status_code = status_code
        self.detail = detail or message
        super().__init__(self.message)


# ==================== 4xx 客户端错误 ====================


class ResourceNotFoundError(ComicAppException):
    """资源不存在（404）"""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource}不存在",
            status_code=404,
            detail=f"{resource}不存在: {identifier}"
        )


class PermissionDeniedError(ComicAppException):
    """权限不足（403）"""

    def __init__(self, message: str = "无权访问该资源"):
        super().__init__(message=message, status_code=403)


class InvalidParameterError(ComicAppException):
    """参数错误（400）"""

    def __init__(self, message: str, parameter: Optional[str] = None):
        detail = f"参数错误: {parameter} - {message}" if parameter else message
        super().__init__(
            message=message,
            status_code=400,
            detail=detail
        )


class InsufficientCreditsError(ComicAppException):
    """积分余额不足（402）"""

    def __init__(self, required: int, current: int):
        self.required = required
        self.current = current
        super().__init__(
            message=f"余额不足，需要 {required} credits，当前只有 {current} credits",
            status_code=402,
        )


class UnauthorizedCharacterError(ComicAppException):
    """角色不属于当前用户（403）"""

    def __init__(self, character_ids: list[str]):
        self.character_ids = list(character_ids)
        super().__init__(
            message="角色验证失败，请确保角色属于当前用户",
            status_code=403,
            detail=f"无权使用的角色: {', '.join(self.character_ids)}"
        )


class GenerationCancelledError(ComicAppException):
    """生成任务被取消（400）"""

    def __init__(self, task_name: str, task_id: Optional[str] = None):
        detail = f"{task_name}（{task_id}）已被取消" if task_id else f"{task_name}已被取消"
        super().__init__(
            message=f"{task_name}已取消",
            status_code=400,
            detail=detail
        )


# ==================== 5xx 服务端错误 ====================


class LLMServiceError(ComicAppException):
    """LLM服务错误（503）"""

    def __init__(self, message: str, provider: Optional[str] = None):
        detail = f"LLM服务错误 [{provider}]: {message}" if provider else f"LLM服务错误: {message}"
        super().__init__(
            message="AI服务暂时不可用，请稍后重试",
            status_code=503,
            detail=detail
        )


class AnalysisFormatError(ComicAppException):
    """故事分析结果格式错误（502）

    模型没有返回要求的函数调用、字段缺失或场景数量不符。
    """

    def __init__(self, reason: str, expected: Optional[int] = None, actual: Optional[int] = None):
        self.expected = expected
        self.actual = actual
        detail = f"场景分析结果格式错误: {reason}"
        if expected is not None:
            detail = f"{detail}（期望 {expected} 个场景，实际 {actual}）"
        super().__init__(
            message="场景分析结果格式错误",
            status_code=502,
            detail=detail
        )


class ImageSynthesisError(ComicAppException):
    """图片生成服务错误（502）"""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.reason = message
        detail = f"图片生成失败 [{provider}]: {message}" if provider else f"图片生成失败: {message}"
        super().__init__(
            message="图片生成失败",
            status_code=502,
            detail=detail
        )


class CompositingFailure(ComicAppException):
    """角色参考图拼接失败（502）"""

    def __init__(self, reason: str, character_id: Optional[str] = None):
        self.character_id = character_id
        detail = f"角色图片拼接失败: {reason}"
        if character_id:
            detail = f"{detail}（角色 {character_id}）"
        super().__init__(
            message="角色参考图准备失败",
            status_code=502,
            detail=detail
        )


class SceneRenderFailure(ComicAppException):
    """场景渲染失败（502）"""

    def __init__(self, scene_order: int, reason: str):
        self.scene_order = scene_order
        super().__init__(
            message=f"场景 {scene_order} 图片生成失败",
            status_code=502,
            detail=f"场景 {scene_order} 渲染失败: {reason}"
        )


class DeductionFailure(ComicAppException):
    """积分扣除失败（500）"""

    def __init__(self, user_id: str, amount: int, reason: str):
        self.user_id = user_id
        self.amount = amount
        super().__init__(
            message="积分扣除失败",
            status_code=500,
            detail=f"用户 {user_id} 扣除 {amount} credits 失败: {reason}"
        )


class DatabaseError(ComicAppException):
    """数据库错误（500）"""

    def __init__(self, message: str):
        super().__init__(
            message="数据库操作失败",
            status_code=500,
            detail=message
        )
