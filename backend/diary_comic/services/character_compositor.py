"""
角色参考图拼接服务

把多个角色头像拼成一张参考图，供图片模型保持人物一致性。

规则：
- 0 个角色：没有参考图
- 1 个角色：直接使用原头像，不做任何处理
- 多个角色：下载全部头像，按方向等间距拼接到纯色画布上，输出 PNG 数据URL

任意一张头像下载或解码失败都会中止整个拼接，不做静默跳过。
"""

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import httpx
from PIL import Image, UnidentifiedImageError

from ..core.constants import CompositorConstants
from ..exceptions import CompositingFailure
from ..schemas.comic import SceneCharacter
from .image_generation.image_sources import ImageSourceError, fetch_image_bytes, to_data_url

logger = logging.getLogger(__name__)


def get_character_position(index: int, total: int) -> str:
    """
    计算角色在拼接图中的位置

    单个角色为 middle；多个角色时首个为 left，末个为 right，其余为 middle。
    """
    if total == 1:
        return CompositorConstants.POSITION_MIDDLE
    if index == 0:
        return CompositorConstants.POSITION_LEFT
    if index == total - 1:
        return CompositorConstants.POSITION_RIGHT
    return CompositorConstants.POSITION_MIDDLE


@dataclass
class CharacterPlacement:
    """单个角色在画布中的位置"""
    character: SceneCharacter
    index: int
    position: str
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


@dataclass
class CompositeResult:
    """拼接结果"""
    reference_image: Optional[str]
    placements: List[CharacterPlacement] = field(default_factory=list)
    width: int = 0
    height: int = 0

    @property
    def positions(self) -> List[str]:
        return [p.position for p in self.placements]


class CharacterCompositor:
    """角色参考图拼接器"""

    def __init__(
        self,
        spacing: int = 10,
        background: str = "white",
        direction: str = "horizontal",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if direction not in ("horizontal", "vertical"):
            raise ValueError(f"不支持的拼接方向: {direction}")
        self.spacing = spacing
        self.background = background
        self.direction = direction
        self._http_client = http_client

    async def composite(
        self,
        characters: Sequence[SceneCharacter],
        direction: Optional[str] = None,
    ) -> CompositeResult:
        """
        拼接角色参考图

        Args:
            characters: 角色列表，顺序即拼接顺序
            direction: 拼接方向（可选，默认使用构造时的配置）

        Raises:
            CompositingFailure: 头像下载、解码或编码失败
        """
        total = len(characters)
        if total == 0:
            return CompositeResult(reference_image=None)

        if total == 1:
            only = characters[0]
            return CompositeResult(
                reference_image=only.avatar_url,
                placements=[CharacterPlacement(
                    character=only, index=0, position=get_character_position(0, 1),
                )],
            )

        direction = direction or self.direction
        logger.info("开始拼接角色参考图: count=%d, direction=%s", total, direction)

        raw_images = await asyncio.gather(
            *(self._download(character) for character in characters)
        )

        try:
            png_bytes, canvas_size, offsets, sizes = await asyncio.to_thread(
                self._stitch, list(raw_images), direction
            )
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise CompositingFailure(f"{type(exc).__name__}: {exc}") from exc

        placements = [
            CharacterPlacement(
                character=character,
                index=index,
                position=get_character_position(index, total),
                x=offsets[index][0],
                y=offsets[index][1],
                width=sizes[index][0],
                height=sizes[index][1],
            )
            for index, character in enumerate(characters)
        ]

        logger.info("角色参考图拼接完成: %dx%d", canvas_size[0], canvas_size[1])
        return CompositeResult(
            reference_image=to_data_url(png_bytes, "image/png"),
            placements=placements,
            width=canvas_size[0],
            height=canvas_size[1],
        )

    async def _download(self, character: SceneCharacter) -> bytes:
        try:
            data = await fetch_image_bytes(character.avatar_url, client=self._http_client)
        except ImageSourceError as exc:
            raise CompositingFailure(str(exc), character_id=character.id) from exc
        if len(data) > CompositorConstants.MAX_IMAGE_BYTES:
            raise CompositingFailure(f"头像过大: {len(data)} bytes", character_id=character.id)
        return data

    def _stitch(
        self,
        raw_images: List[bytes],
        direction: str,
    ) -> Tuple[bytes, Tuple[int, int], List[Tuple[int, int]], List[Tuple[int, int]]]:
        """同步拼接（在线程中执行）"""
        images = []
        for data in raw_images:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                images.append(img.convert("RGBA"))

        sizes = [img.size for img in images]
        gaps = self.spacing * (len(images) - 1)
        if direction == "horizontal":
            canvas_size = (sum(w for w, _ in sizes) + gaps, max(h for _, h in sizes))
        else:
            canvas_size = (max(w for w, _ in sizes), sum(h for _, h in sizes) + gaps)

        canvas = Image.new("RGB", canvas_size, self.background)
        offsets: List[Tuple[int, int]] = []
        cursor = 0
        for img in images:
            offset = (cursor, 0) if direction == "horizontal" else (0, cursor)
            canvas.paste(img, offset, img)
            offsets.append(offset)
            cursor += (img.width if direction == "horizontal" else img.height) + self.spacing

        buffer = io.BytesIO()
        canvas.save(buffer, format="PNG")
        return buffer.getvalue(), canvas_size, offsets, sizes
