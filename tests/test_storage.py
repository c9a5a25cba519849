"""生成图片存储测试"""

import pytest

from conftest import make_png, png_data_url
from diary_comic.exceptions import ImageSynthesisError
from diary_comic.services.image_generation import ImageStorage
from diary_comic.services.image_generation.fs_utils import resolve_under_root
from diary_comic.services.image_generation.storage import build_relative_path


def test_relative_path_layout():
    assert build_relative_path("u1", "comics", "scene-1") == "users/u1/comics/scene-1.png"
    assert build_relative_path("u1", "posters", "scene-1", 1700000000000) == (
        "users/u1/posters/scene-1_retry_1700000000000.png"
    )


@pytest.mark.parametrize("user_id,kind,scene_id", [
    ("../etc", "comics", "s1"),
    ("u1", "comics", "a/b"),
    ("u1", "avatars", "s1"),
    ("", "comics", "s1"),
])
def test_relative_path_rejects_unsafe_segments(user_id, kind, scene_id):
    with pytest.raises(ImageSynthesisError):
        build_relative_path(user_id, kind, scene_id)


def test_resolve_under_root_blocks_traversal(images_root):
    assert resolve_under_root("users/u1/comics/a.png") == (images_root / "users/u1/comics/a.png").resolve()
    with pytest.raises(ValueError):
        resolve_under_root("../outside.png")


async def test_save_writes_file_and_returns_public_url(images_root):
    storage = ImageStorage(public_base="/api/images")
    url = await storage.save("u1", "comics", "scene-1", png_data_url((8, 8)))

    assert url == "/api/images/users/u1/comics/scene-1.png"
    saved = images_root / "users" / "u1" / "comics" / "scene-1.png"
    assert saved.read_bytes() == make_png((8, 8))
    assert not list(saved.parent.glob(".tmp_*"))


async def test_retry_save_does_not_overwrite_original(images_root):
    storage = ImageStorage(public_base="/api/images")
    first = await storage.save("u1", "posters", "scene-1", png_data_url((8, 8)))
    second = await storage.save("u1", "posters", "scene-1", png_data_url((9, 9)), retry=True)

    assert first != second
    assert "/users/u1/posters/scene-1_retry_" in second
    assert (images_root / "users/u1/posters/scene-1.png").read_bytes() == make_png((8, 8))


async def test_save_fails_on_unreadable_source(images_root):
    storage = ImageStorage()
    with pytest.raises(ImageSynthesisError):
        await storage.save("u1", "comics", "scene-1", "ftp://nowhere/image.png")
