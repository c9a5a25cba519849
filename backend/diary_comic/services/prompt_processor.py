"""
提示词处理服务

把场景描述中的 <角色名> 标记替换为与参考图拼接布局一致的位置标签，
再叠加画风前缀与质量后缀，得到最终发送给图片模型的提示词。

位置标签规则（与 CharacterCompositor 的拼接顺序一致）：
- 单个角色: "character"
- 多个角色: 按下标依次为 "left character" / "middle character" / "right character"
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..core.constants import ComicFormat
from ..schemas.comic import SceneCharacter
from .character_compositor import get_character_position
from .name_resolver import NAME_TOKEN_PATTERN, CharacterNameResolver, ExactNameResolver

logger = logging.getLogger(__name__)


# 多格漫画画风前缀
COMIC_STYLE_PREFIXES: Dict[str, str] = {
    "cute": "cute, kawaii, adorable style, ",
    "realistic": "realistic, detailed, high quality, ",
    "minimal": "minimal, simple, clean style, ",
    "kawaii": "kawaii, cute, Japanese style, ",
}
COMIC_QUALITY_SUFFIX = ", high quality, detailed, beautiful composition"

# 海报画风映射，未知画风回退到 cute
POSTER_STYLES: Dict[str, str] = {
    "cute": "cute anime poster style, kawaii aesthetic, vibrant pastel colors, charming and heartwarming",
    "realistic": "photorealistic poster style, cinematic realism, dramatic photography lighting",
    "cartoon": "dynamic cartoon poster style, bold cartoon aesthetics, vivid animated look",
    "anime": "epic anime poster style, dramatic anime composition, stunning anime art quality",
    "watercolor": "artistic watercolor poster style, flowing watercolor techniques, artistic poster design",
}
POSTER_ENHANCERS: List[str] = [
    "cinematic poster composition",
    "dramatic lighting",
    "high contrast",
    "professional poster design",
    "eye-catching visual impact",
    "award-winning poster art",
    "stunning visual storytelling",
    "bold and striking",
    "magazine cover quality",
    "premium wall art aesthetic",
]
POSTER_SUFFIX = "perfect for wall display, apparel design, high-quality poster art"


@dataclass
class CharacterMapping:
    """角色与其位置标签的对应关系"""
    character: SceneCharacter
    position: str
    label: str


@dataclass
class ProcessedPrompt:
    """提示词处理结果"""
    original: str
    text: str
    mappings: List[CharacterMapping] = field(default_factory=list)


def position_label(index: int, total: int) -> str:
    """计算角色的位置标签"""
    if total <= 1:
        return "character"
    return f"{get_character_position(index, total)} character"


class PromptProcessor:
    """提示词处理器"""

    def __init__(self, resolver: Optional[CharacterNameResolver] = None):
        self.resolver = resolver or ExactNameResolver()

    def process(self, scene_description: str, characters: Sequence[SceneCharacter]) -> ProcessedPrompt:
        """
        替换场景描述中的角色名标记

        匹配到的标记替换为位置标签；匹配不到的标记去掉尖括号保留原文，
        保证输出中不残留任何角色名标记。
        """
        total = len(characters)
        mappings = [
            CharacterMapping(
                character=character,
                position=get_character_position(index, total),
                label=position_label(index, total),
            )
            for index, character in enumerate(characters)
        ]
        label_by_id = {m.character.id: m.label for m in mappings}

        def _replace(match) -> str:
            token = match.group(1)
            character = self.resolver.match(token, characters)
            if character is None:
                logger.debug("未匹配的角色标记: <%s>", token)
                return token
            return label_by_id[character.id]

        text = NAME_TOKEN_PATTERN.sub(_replace, scene_description or "")
        return ProcessedPrompt(original=scene_description, text=text, mappings=mappings)

    def build_final_prompt(
        self,
        scene_description: str,
        characters: Sequence[SceneCharacter],
        style: str,
        comic_format: ComicFormat,
        extras: Optional[Dict[str, Any]] = None,
    ) -> ProcessedPrompt:
        """
        生成最终提示词

        Args:
            scene_description: 场景描述（可含角色标记）
            characters: 场景角色，顺序与参考图拼接顺序一致
            style: 画风标识
            comic_format: 漫画格式，海报使用独立的风格模板
            extras: 分析阶段产出的附加字段（visual_elements / mood / visual_theme / composition_style）
        """
        processed = self.process(scene_description, characters)
        extras = extras or {}

        if comic_format == ComicFormat.SINGLE:
            parts = [
                processed.text,
                POSTER_STYLES.get(style, POSTER_STYLES["cute"]),
                ", ".join(POSTER_ENHANCERS),
            ]
            if extras.get("mood"):
                parts.append(f"mood: {extras['mood']}")
            if extras.get("visual_theme"):
                parts.append(f"visual theme: {extras['visual_theme']}")
            if extras.get("composition_style"):
                parts.append(f"composition: {extras['composition_style']}")
            parts.append(POSTER_SUFFIX)
            processed.text = ", ".join(parts)
            return processed

        body = processed.text
        visual_elements = extras.get("visual_elements")
        if visual_elements:
            body = f"{body}, {self.process(visual_elements, characters).text}"
        processed.text = f"{COMIC_STYLE_PREFIXES.get(style, '')}{body}{COMIC_QUALITY_SUFFIX}"
        return processed
