"""
漫画生成 Schema

定义生成请求、场景重试请求以及漫画/场景响应模型。
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.constants import ComicFormat, LayoutMode, normalize_format


class GenerateComicRequest(BaseModel):
    """漫画生成请求"""

    story: str = Field(..., min_length=1, max_length=5000, description="日记/故事文本")
    character_ids: List[str] = Field(default_factory=list, max_length=3, description="参与的角色ID，最多3个")
    style: str = Field(default="cute", max_length=50, description="画风标识：cute/realistic/minimal/kawaii 等")
    format: ComicFormat = Field(default=ComicFormat.FOUR, description="漫画格式，支持 comic/poster/five-page 别名")
    layout_mode: Optional[LayoutMode] = Field(default=None, description="布局模式，不提供则使用格式默认值")

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, value):
        """兼容旧版格式别名"""
        if isinstance(value, str):
            return normalize_format(value)
        return value

    @field_validator("character_ids")
    @classmethod
    def _dedupe_character_ids(cls, value: List[str]) -> List[str]:
        """去重并保持顺序，角色顺序决定拼接位置"""
        return list(dict.fromkeys(value))

    @field_validator("story")
    @classmethod
    def _strip_story(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("故事内容不能为空")
        return stripped


class RetrySceneRequest(BaseModel):
    """重新生成单个场景请求"""

    description: Optional[str] = Field(default=None, max_length=2000, description="新的场景描述（可选，不提供则沿用原描述）")


class SceneCharacter(BaseModel):
    """场景中保存的角色快照"""

    id: str
    name: str
    avatar_url: str


class ComicSceneResponse(BaseModel):
    """场景响应模型"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    comic_id: str
    scene_order: int
    content: str
    scenario_description: str
    mood: Optional[str] = None
    quote: Optional[str] = None
    characters: List[SceneCharacter] = Field(default_factory=list)
    image_url: Optional[str] = None
    image_prompt: Optional[str] = None
    status: str
    retry_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ComicResponse(BaseModel):
    """漫画响应模型"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: Optional[str] = None
    content: str
    style: str
    format: str
    layout_mode: str
    scene_ids: List[str] = Field(default_factory=list)
    characters: List[SceneCharacter] = Field(default_factory=list)
    status: str
    error_message: Optional[str] = None
    scenes: List[ComicSceneResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ComicSummary(BaseModel):
    """漫画列表项"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: Optional[str] = None
    format: str
    status: str
    created_at: Optional[datetime] = None


class GenerationResult(BaseModel):
    """生成完成后的结果载荷"""

    comic_id: str
    title: Optional[str] = None
    status: str
    scenes: List[ComicSceneResponse] = Field(default_factory=list)
