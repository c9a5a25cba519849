"""
故事分析服务

调用支持函数调用的大模型，把日记文本拆分为有序的场景描述。

流程：
1. 根据格式选择调用变体（多格 / 五页 / 海报）
2. 强制模型调用对应函数，解析参数 JSON
3. 校验必需字段与场景数量（数量不符直接失败，不补齐不截断）
4. 从描述中提取 <角色名> 标记并解析为角色ID
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from ...core.config import Settings, settings as default_settings
from ...core.constants import AnalysisKind, ComicFormat, get_format_profile
from ...exceptions import AnalysisFormatError, LLMServiceError
from ..name_resolver import CharacterNameResolver, NamedCharacter, get_name_resolver
from . import prompts

logger = logging.getLogger(__name__)


@dataclass
class SceneDescription:
    """单个场景描述"""
    order: int
    description: str
    mood: str
    quote: str
    character_ids: List[str] = field(default_factory=list)
    title: Optional[str] = None
    visual_elements: Optional[str] = None


@dataclass
class StoryAnalysis:
    """故事分析结果"""
    title: str
    kind: AnalysisKind
    scenes: List[SceneDescription]
    extras: Dict[str, Any] = field(default_factory=dict)


class StoryAnalyzer:
    """故事分析器"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        resolver: Optional[CharacterNameResolver] = None,
        config: Optional[Settings] = None,
    ):
        self.config = config or default_settings
        self._client = client
        self.resolver = resolver or get_name_resolver(self.config.name_match_strategy)

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            base_url = str(self.config.openai_base_url) if self.config.openai_base_url else None
            self._client = AsyncOpenAI(
                api_key=self.config.openai_api_key,
                base_url=base_url,
                timeout=self.config.analysis_timeout,
            )
        return self._client

    async def analyze(
        self,
        story_text: str,
        characters: Sequence[NamedCharacter],
        comic_format: ComicFormat,
        style: Optional[str] = None,
    ) -> StoryAnalysis:
        """
        分析故事

        Args:
            story_text: 日记/故事文本
            characters: 可用角色（需要 id / name，description 可选）
            comic_format: 漫画格式，决定场景数量与调用变体
            style: 画风偏好（仅作为提示）

        Raises:
            AnalysisFormatError: 模型没有按要求返回结果
            LLMServiceError: 模型服务不可用
        """
        profile = get_format_profile(comic_format)
        characters_block = prompts.format_characters(characters)

        if profile.analysis_kind == AnalysisKind.POSTER:
            system_prompt = prompts.build_poster_system_prompt(characters_block, style)
            tool = prompts.poster_concept_tool()
            temperature = self.config.poster_temperature
        elif profile.analysis_kind == AnalysisKind.FIVE_PAGE:
            system_prompt = prompts.build_five_page_system_prompt(characters_block, style)
            tool = prompts.five_page_tool()
            temperature = self.config.analysis_temperature
        else:
            system_prompt = prompts.build_scenes_system_prompt(profile.scene_count, characters_block, style)
            tool = prompts.comic_scenes_tool(profile.scene_count)
            temperature = self.config.analysis_temperature

        tool_name = tool["function"]["name"]
        logger.info(
            "开始故事分析: kind=%s, scenes=%d, characters=%d, model=%s",
            profile.analysis_kind.value, profile.scene_count, len(characters), self.config.analysis_model,
        )

        arguments = await self._call_tool(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"Diary content: {story_text}"},
            ],
            tool=tool,
            temperature=temperature,
        )
        payload = self._parse_arguments(arguments, tool_name)

        if profile.analysis_kind == AnalysisKind.POSTER:
            analysis = self._build_poster(payload, characters)
        else:
            analysis = self._build_scenes(payload, characters, profile.analysis_kind, profile.scene_count)

        logger.info("故事分析完成: title=%s, scenes=%d", analysis.title, len(analysis.scenes))
        return analysis

    async def _call_tool(self, messages: List[Dict[str, str]], tool: Dict[str, Any], temperature: float) -> str:
        tool_name = tool["function"]["name"]
        try:
            response = await self.client.chat.completions.create(
                model=self.config.analysis_model,
                messages=messages,
                tools=[tool],
                tool_choice={"type": "function", "function": {"name": tool_name}},
                temperature=temperature,
                max_tokens=self.config.analysis_max_tokens,
            )
        except (APITimeoutError, httpx.ReadTimeout) as exc:
            logger.error("故事分析超时: model=%s", self.config.analysis_model, exc_info=exc)
            raise LLMServiceError("AI 服务响应超时", self.config.analysis_model) from exc
        except (APIConnectionError, httpx.HTTPError) as exc:
            logger.error("故事分析连接失败: model=%s", self.config.analysis_model, exc_info=exc)
            raise LLMServiceError("无法连接到 AI 服务", self.config.analysis_model) from exc
        except RateLimitError as exc:
            logger.warning("故事分析被限流: model=%s", self.config.analysis_model)
            raise LLMServiceError("AI 服务请求过于频繁", self.config.analysis_model) from exc
        except APIError as exc:
            logger.error("故事分析调用失败: model=%s, error=%s", self.config.analysis_model, exc)
            raise LLMServiceError(str(exc), self.config.analysis_model) from exc

        choices = getattr(response, "choices", None) or []
        message = choices[0].message if choices else None
        tool_calls = getattr(message, "tool_calls", None) or []
        for call in tool_calls:
            function = getattr(call, "function", None)
            if function is not None and function.name == tool_name and function.arguments:
                return function.arguments
        raise AnalysisFormatError(f"模型没有调用函数 {tool_name}")

    @staticmethod
    def _parse_arguments(arguments: str, tool_name: str) -> Dict[str, Any]:
        try:
            payload = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise AnalysisFormatError(f"{tool_name} 参数不是合法的JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise AnalysisFormatError(f"{tool_name} 参数必须是对象")
        return payload

    @staticmethod
    def _require_text(data: Dict[str, Any], key: str, where: str) -> str:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise AnalysisFormatError(f"{where} 缺少字段 {key}")
        return value.strip()

    def _build_scenes(
        self,
        payload: Dict[str, Any],
        characters: Sequence[NamedCharacter],
        kind: AnalysisKind,
        expected: int,
    ) -> StoryAnalysis:
        title = self._require_text(payload, "title", "分析结果")
        raw_scenes = payload.get("scenes")
        if not isinstance(raw_scenes, list):
            raise AnalysisFormatError("分析结果缺少 scenes 列表")
        if len(raw_scenes) != expected:
            raise AnalysisFormatError("场景数量不符", expected=expected, actual=len(raw_scenes))

        scenes: List[SceneDescription] = []
        for index, raw in enumerate(raw_scenes, start=1):
            if not isinstance(raw, dict):
                raise AnalysisFormatError(f"场景 {index} 不是对象")
            where = f"场景 {index}"
            description = self._require_text(raw, "description", where)
            scene = SceneDescription(
                order=index,
                description=description,
                mood=self._require_text(raw, "mood", where),
                quote=self._require_text(raw, "quote", where),
                character_ids=self.resolver.resolve_ids(description, characters),
            )
            if kind == AnalysisKind.FIVE_PAGE:
                scene.title = self._require_text(raw, "title", where)
                scene.visual_elements = self._require_text(raw, "visual_elements", where)
            scenes.append(scene)

        extras: Dict[str, Any] = {}
        if payload.get("art_style"):
            extras["art_style"] = payload["art_style"]
        return StoryAnalysis(title=title, kind=kind, scenes=scenes, extras=extras)

    def _build_poster(self, payload: Dict[str, Any], characters: Sequence[NamedCharacter]) -> StoryAnalysis:
        title = self._require_text(payload, "title", "海报构思")
        description = self._require_text(payload, "description", "海报构思")
        mood = self._require_text(payload, "mood", "海报构思")
        extras = {
            "mood": mood,
            "visual_theme": self._require_text(payload, "visual_theme", "海报构思"),
            "composition_style": self._require_text(payload, "composition_style", "海报构思"),
        }
        scene = SceneDescription(
            order=1,
            description=description,
            mood=mood,
            quote=(payload.get("quote") or title).strip(),
            character_ids=self.resolver.resolve_ids(description, characters),
        )
        return StoryAnalysis(title=title, kind=AnalysisKind.POSTER, scenes=[scene], extras=extras)
