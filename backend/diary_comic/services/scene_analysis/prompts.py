"""
故事分析提示词与函数定义

三种调用变体各对应一个强制调用的函数：
- create_comic_scenes: 多格漫画（1/3/4 个场景）
- expand_story_to_five_pages: 五页故事弧线
- create_poster_concept: 单张海报构思
"""

from typing import Any, Dict, Iterable, Optional


CHARACTER_TOKEN_RULE = (
    "When a character appears in a description, always write the character's exact name "
    "wrapped in angle brackets, for example <Alice>. Never describe the character's appearance; "
    "the reference image takes care of that."
)


def format_characters(characters: Iterable[Any]) -> str:
    """把可用角色格式化为提示词片段"""
    lines = []
    for character in characters:
        description = getattr(character, "description", None)
        line = f"- <{character.name}>"
        if description:
            line = f"{line}: {description}"
        lines.append(line)
    if not lines:
        return "No specific characters are provided. Do not use any <Name> markers."
    return "Available characters:\n" + "\n".join(lines)


def build_scenes_system_prompt(scene_count: int, characters_block: str, style: Optional[str]) -> str:
    return (
        "You are a comic storyboard artist. Split the user's diary into exactly "
        f"{scene_count} sequential comic panel(s) that capture its most meaningful moments.\n\n"
        "For each panel provide an English description suitable for image generation, "
        "the mood of the panel, and a short quote in the same language as the diary.\n\n"
        f"{CHARACTER_TOKEN_RULE}\n\n{characters_block}\n\n"
        f"Style preference: {style or 'cute'}"
    )


def build_five_page_system_prompt(characters_block: str, style: Optional[str]) -> str:
    return (
        "You are a professional comic story expansion expert. Expand the user's story into "
        "exactly 5 comic pages with rich visual and emotional details.\n\n"
        "Each page follows a classic story structure:\n"
        "- Page 1: Setup/Introduction\n"
        "- Page 2: Rising Action\n"
        "- Page 3: Climax/Turning Point\n"
        "- Page 4: Falling Action/Resolution\n"
        "- Page 5: Conclusion/Ending\n\n"
        "For each page provide a title, a detailed visual description for image generation, "
        "a memorable quote, the mood and the key visual elements.\n\n"
        f"{CHARACTER_TOKEN_RULE}\n\n{characters_block}\n\n"
        f"Style preference: {style or 'cute'}"
    )


def build_poster_system_prompt(characters_block: str, style: Optional[str]) -> str:
    return (
        "You are a poster art director. Turn the user's diary into one striking poster concept "
        "that captures the essence of the day in a single image.\n\n"
        "Provide a title, an English description for image generation, the mood, "
        "the visual theme and the composition style.\n\n"
        f"{CHARACTER_TOKEN_RULE}\n\n{characters_block}\n\n"
        f"Style preference: {style or 'cute'}"
    )


def _scene_item_schema(extra_properties: Optional[Dict[str, Any]] = None, extra_required: Iterable[str] = ()) -> Dict[str, Any]:
    properties: Dict[str, Any] = {
        "description": {
            "type": "string",
            "description": "English scene description for image generation, characters written as <Name>",
        },
        "mood": {
            "type": "string",
            "description": "Overall mood of the scene (happy, sad, excited, peaceful, nostalgic, ...)",
        },
        "quote": {
            "type": "string",
            "description": "A short sentence in the same language as the diary reflecting the scene",
        },
    }
    properties.update(extra_properties or {})
    return {
        "type": "object",
        "properties": properties,
        "required": ["description", "mood", "quote", *extra_required],
    }


def comic_scenes_tool(scene_count: int) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": "create_comic_scenes",
            "description": f"Split a diary into exactly {scene_count} comic scene(s) with a story title",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Engaging title for the story"},
                    "scenes": {
                        "type": "array",
                        "items": _scene_item_schema(),
                        "minItems": scene_count,
                        "maxItems": scene_count,
                    },
                },
                "required": ["title", "scenes"],
            },
        },
    }


def five_page_tool() -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": "expand_story_to_five_pages",
            "description": "Expand a story into exactly 5 comic pages following a story arc",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Overall title for the 5-page story"},
                    "art_style": {"type": "string", "description": "Main art style of the story in English"},
                    "scenes": {
                        "type": "array",
                        "items": _scene_item_schema(
                            extra_properties={
                                "title": {"type": "string", "description": "Page title in English"},
                                "visual_elements": {
                                    "type": "string",
                                    "description": "Key visual elements and details in English",
                                },
                            },
                            extra_required=("title", "visual_elements"),
                        ),
                        "minItems": 5,
                        "maxItems": 5,
                    },
                },
                "required": ["title", "scenes"],
            },
        },
    }


def poster_concept_tool() -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": "create_poster_concept",
            "description": "Create a single poster concept from a diary",
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Poster title"},
                    "description": {
                        "type": "string",
                        "description": "English poster description for image generation, characters written as <Name>",
                    },
                    "mood": {"type": "string", "description": "Emotional tone of the poster"},
                    "quote": {
                        "type": "string",
                        "description": "A short tagline in the same language as the diary",
                    },
                    "visual_theme": {"type": "string", "description": "Main visual theme"},
                    "composition_style": {"type": "string", "description": "Composition and layout style"},
                },
                "required": ["title", "description", "mood", "visual_theme", "composition_style"],
            },
        },
    }
