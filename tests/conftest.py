"""
测试公共夹具

- 内存 SQLite（StaticPool 共享同一连接）+ 建表
- 生成图片写入 tmp_path，不落到真实存储目录
- 故事分析与图片生成使用假实现，通过构造函数注入
"""

import base64
import io
import uuid
from typing import List, Optional, Sequence

import pytest
import pytest_asyncio
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from diary_comic import models  # noqa: F401  注册模型
from diary_comic.core.constants import AnalysisKind, get_format_profile
from diary_comic.db.base import Base
from diary_comic.exceptions import ImageSynthesisError
from diary_comic.models.character import Character
from diary_comic.models.credit import CreditAccount
from diary_comic.services.image_generation import fs_utils
from diary_comic.services.name_resolver import ExactNameResolver
from diary_comic.services.queue import ImageRequestQueue
from diary_comic.services.scene_analysis import SceneDescription, StoryAnalysis


# ============================================================
# 图片工具
# ============================================================

def make_png(size=(40, 30), color=(255, 0, 0, 255)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGBA", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def png_data_url(size=(40, 30), color=(255, 0, 0, 255)) -> str:
    return "data:image/png;base64," + base64.b64encode(make_png(size, color)).decode("ascii")


def decode_data_url(url: str) -> Image.Image:
    raw = base64.b64decode(url.split(",", 1)[1])
    image = Image.open(io.BytesIO(raw))
    image.load()
    return image


def unique_user(prefix: str = "user") -> str:
    """账本锁按用户区分，每个用例使用独立用户"""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


# ============================================================
# 数据库
# ============================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def seed_user(session, user_id: str, balance: Optional[int], names: Sequence[str] = ()) -> List[Character]:
    """创建积分账户（balance 为 None 时不建账户）与角色"""
    if balance is not None:
        session.add(CreditAccount(user_id=user_id, balance=balance))
    colors = [(255, 0, 0, 255), (0, 255, 0, 255), (0, 0, 255, 255)]
    characters = [
        Character(
            user_id=user_id,
            name=name,
            avatar_url=png_data_url((20 + 10 * index, 30), colors[index % len(colors)]),
        )
        for index, name in enumerate(names)
    ]
    session.add_all(characters)
    await session.commit()
    return characters


# ============================================================
# 存储与队列
# ============================================================

@pytest.fixture
def images_root(tmp_path, monkeypatch):
    root = tmp_path / "generated_images"
    root.mkdir()
    monkeypatch.setattr(fs_utils, "get_images_root", lambda: root)
    return root


@pytest.fixture(autouse=True)
def reset_image_queue():
    ImageRequestQueue.reset_instance()
    yield
    ImageRequestQueue.reset_instance()


# ============================================================
# 假实现
# ============================================================

class FakeAnalyzer:
    """按预设描述返回分析结果，角色ID用真实解析器提取"""

    def __init__(self, descriptions: Sequence[str], title: str = "公园的一天"):
        self.descriptions = list(descriptions)
        self.title = title
        self.calls = 0
        self.resolver = ExactNameResolver()

    async def analyze(self, story_text, characters, comic_format, style=None) -> StoryAnalysis:
        self.calls += 1
        profile = get_format_profile(comic_format)
        five_page = profile.analysis_kind == AnalysisKind.FIVE_PAGE
        scenes = [
            SceneDescription(
                order=index,
                description=description,
                mood="happy",
                quote=f"quote {index}",
                character_ids=self.resolver.resolve_ids(description, characters),
                title=f"Page {index}" if five_page else None,
                visual_elements=f"lanterns {index}" if five_page else None,
            )
            for index, description in enumerate(self.descriptions, start=1)
        ]
        extras = {}
        if profile.analysis_kind == AnalysisKind.POSTER:
            extras = {"mood": "joyful", "visual_theme": "sunset", "composition_style": "centered"}
        return StoryAnalysis(title=self.title, kind=profile.analysis_kind, scenes=scenes, extras=extras)


class FakeSynthesizer:
    """记录调用并返回数据URL；fail_on 指定第几次调用失败（从1开始）"""

    def __init__(self, fail_on: Optional[int] = None):
        self.fail_on = fail_on
        self.calls: List[dict] = []

    async def render(self, reference_image, prompt, params=None, on_progress=None) -> str:
        self.calls.append({"reference_image": reference_image, "prompt": prompt})
        if self.fail_on is not None and len(self.calls) == self.fail_on:
            raise ImageSynthesisError("provider exploded", "fake")
        if on_progress is not None:
            on_progress(50)
        return png_data_url((16, 16), (10, 20, 30, 255))


@pytest.fixture
def four_scene_descriptions():
    return [
        "<Alice> walks into the park",
        "<Alice> and <Bob> share an ice cream",
        "<Bob> slips on a banana peel",
        "Everyone laughs under the sunset",
    ]
