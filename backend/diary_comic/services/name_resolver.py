"""
角色名标记解析

场景描述中的角色以 <角色名> 形式出现。本模块负责：
1. 从文本中提取所有标记
2. 按可插拔的匹配策略把标记解析为角色

默认策略为精确匹配；大小写不敏感策略会忽略大小写与首尾标点。
"""

import re
import string
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Type


NAME_TOKEN_PATTERN = re.compile(r"<([^<>]+)>")

# 首尾需要忽略的字符（ASCII标点、空白与常见中文标点）
_STRIP_CHARS = string.punctuation + string.whitespace + "，。！？、；：“”‘’（）《》【】"


class NamedCharacter(Protocol):
    """解析器只依赖 id 和 name"""
    id: str
    name: str


def extract_name_tokens(text: str) -> List[str]:
    """提取文本中的全部 <Name> 标记内容（保持出现顺序，不去重）"""
    return NAME_TOKEN_PATTERN.findall(text or "")


class CharacterNameResolver(ABC):
    """角色名解析器接口"""

    STRATEGY: str = ""

    @abstractmethod
    def normalize(self, name: str) -> str:
        """返回用于比较的规范化名称"""

    def matches(self, token: str, name: str) -> bool:
        return self.normalize(token) == self.normalize(name)

    def match(self, token: str, characters: Iterable[NamedCharacter]) -> Optional[NamedCharacter]:
        """返回与标记匹配的第一个角色，未匹配返回 None"""
        for character in characters:
            if self.matches(token, character.name):
                return character
        return None

    def resolve_ids(self, text: str, characters: Sequence[NamedCharacter]) -> List[str]:
        """
        把文本中的标记解析为角色ID

        未匹配的标记直接忽略；结果去重并按首次出现顺序排列。
        """
        resolved: List[str] = []
        for token in extract_name_tokens(text):
            character = self.match(token, characters)
            if character is not None and character.id not in resolved:
                resolved.append(character.id)
        return resolved


class ExactNameResolver(CharacterNameResolver):
    """精确匹配"""

    STRATEGY = "exact"

    def normalize(self, name: str) -> str:
        return name


class CaseInsensitiveNameResolver(CharacterNameResolver):
    """忽略大小写与首尾标点/空白"""

    STRATEGY = "case_insensitive"

    def normalize(self, name: str) -> str:
        return name.strip(_STRIP_CHARS).casefold()


_RESOLVERS: Dict[str, Type[CharacterNameResolver]] = {
    ExactNameResolver.STRATEGY: ExactNameResolver,
    CaseInsensitiveNameResolver.STRATEGY: CaseInsensitiveNameResolver,
}


def get_name_resolver(strategy: str = "exact") -> CharacterNameResolver:
    """按策略名获取解析器

    Raises:
        ValueError: 未知策略
    """
    resolver_cls = _RESOLVERS.get(strategy)
    if resolver_cls is None:
        raise ValueError(f"未知的角色名匹配策略: {strategy}")
    return resolver_cls()


__all__ = [
    "NAME_TOKEN_PATTERN",
    "CharacterNameResolver",
    "ExactNameResolver",
    "CaseInsensitiveNameResolver",
    "extract_name_tokens",
    "get_name_resolver",
]
