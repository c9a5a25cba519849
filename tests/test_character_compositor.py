"""角色参考图拼接测试"""

import httpx
import pytest
from PIL import Image

from conftest import decode_data_url, make_png, png_data_url
from diary_comic.exceptions import CompositingFailure
from diary_comic.schemas.comic import SceneCharacter
from diary_comic.services.character_compositor import CharacterCompositor, get_character_position


def _character(cid: str, avatar_url: str) -> SceneCharacter:
    return SceneCharacter(id=cid, name=cid.title(), avatar_url=avatar_url)


async def test_no_characters_has_no_reference():
    result = await CharacterCompositor().composite([])
    assert result.reference_image is None
    assert result.placements == []


async def test_single_character_passes_avatar_through():
    avatar = "https://cdn.example.com/alice.png"
    result = await CharacterCompositor().composite([_character("alice", avatar)])
    assert result.reference_image == avatar
    assert result.positions == ["middle"]


async def test_horizontal_canvas_dimensions_and_positions():
    characters = [
        _character("alice", png_data_url((40, 30))),
        _character("bob", png_data_url((20, 50))),
    ]
    result = await CharacterCompositor(spacing=10).composite(characters)

    assert (result.width, result.height) == (70, 50)
    assert result.positions == ["left", "right"]
    assert [(p.x, p.y) for p in result.placements] == [(0, 0), (50, 0)]
    image = decode_data_url(result.reference_image)
    assert image.size == (70, 50)
    assert image.format == "PNG"


async def test_vertical_canvas_dimensions():
    characters = [
        _character("alice", png_data_url((40, 30))),
        _character("bob", png_data_url((20, 50))),
        _character("carol", png_data_url((10, 10))),
    ]
    result = await CharacterCompositor(spacing=5, direction="vertical").composite(characters)

    assert (result.width, result.height) == (40, 30 + 50 + 10 + 2 * 5)
    assert result.positions == ["left", "middle", "right"]


async def test_downloads_http_avatars_through_client():
    payloads = {
        "https://cdn.example.com/a.png": make_png((30, 30)),
        "https://cdn.example.com/b.png": make_png((30, 20)),
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payloads[str(request.url)])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        compositor = CharacterCompositor(spacing=0, http_client=client)
        result = await compositor.composite([
            _character("a", "https://cdn.example.com/a.png"),
            _character("b", "https://cdn.example.com/b.png"),
        ])

    assert (result.width, result.height) == (60, 30)


async def test_failed_download_aborts_compositing():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        compositor = CharacterCompositor(http_client=client)
        with pytest.raises(CompositingFailure) as exc_info:
            await compositor.composite([
                _character("a", png_data_url()),
                _character("b", "https://cdn.example.com/missing.png"),
            ])

    assert exc_info.value.character_id == "b"


async def test_undecodable_avatar_raises():
    bogus = "data:image/png;base64,bm90IGFuIGltYWdl"
    with pytest.raises(CompositingFailure):
        await CharacterCompositor().composite([
            _character("a", png_data_url()),
            _character("b", bogus),
        ])


async def test_oversized_avatar_raises(monkeypatch):
    # 像素数超过 2 * MAX_IMAGE_PIXELS 时 Pillow 直接拒绝解码
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
    with pytest.raises(CompositingFailure) as exc_info:
        await CharacterCompositor().composite([
            _character("a", png_data_url((40, 30))),
            _character("b", png_data_url((40, 30))),
        ])

    assert "DecompressionBombError" in exc_info.value.detail


def test_character_position_rules():
    assert get_character_position(0, 1) == "middle"
    assert [get_character_position(i, 2) for i in range(2)] == ["left", "right"]
    assert [get_character_position(i, 3) for i in range(3)] == ["left", "middle", "right"]


def test_unknown_direction_rejected():
    with pytest.raises(ValueError):
        CharacterCompositor(direction="diagonal")
