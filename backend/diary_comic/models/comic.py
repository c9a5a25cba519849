"""
漫画与场景模型

Comic 对应一次生成任务，ComicScene 是其中的一格/一页。
场景按 scene_order 排序，scene_order 在同一漫画内唯一。
"""

import uuid
from typing import List, Optional

from sqlalchemy import JSON, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.constants import ComicStatus, SceneStatus
from ..db.base import Base
from .mixins import TimestampsMixin


def _new_id() -> str:
    return str(uuid.uuid4())


class Comic(TimestampsMixin, Base):
    """漫画生成任务"""

    __tablename__ = "comics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255))
    content: Mapped[str] = mapped_column(Text(), nullable=False)  # 原始故事文本
    style: Mapped[str] = mapped_column(String(50), nullable=False, default="cute")
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    layout_mode: Mapped[str] = mapped_column(String(30), nullable=False)
    scene_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    characters: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)  # 请求角色快照，按请求顺序
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ComicStatus.PROCESSING.value, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text())

    scenes: Mapped[List["ComicScene"]] = relationship(
        "ComicScene",
        back_populates="comic",
        cascade="all, delete-orphan",
        order_by="ComicScene.scene_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Comic(id={self.id}, format={self.format}, status={self.status})>"


class ComicScene(TimestampsMixin, Base):
    """漫画场景"""

    __tablename__ = "comic_scenes"
    __table_args__ = (
        UniqueConstraint("comic_id", "scene_order", name="uq_comic_scene_order"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    comic_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("comics.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scene_order: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text(), nullable=False)
    scenario_description: Mapped[str] = mapped_column(Text(), nullable=False)  # 可能含 <角色名> 标记
    mood: Mapped[Optional[str]] = mapped_column(String(100))
    quote: Mapped[Optional[str]] = mapped_column(Text())
    characters: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)
    render_extras: Mapped[Optional[dict]] = mapped_column(JSON)  # 分析阶段的附加提示字段，重试时复用
    image_url: Mapped[Optional[str]] = mapped_column(Text())
    image_prompt: Mapped[Optional[str]] = mapped_column(Text())
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SceneStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    comic: Mapped["Comic"] = relationship("Comic", back_populates="scenes")

    def __repr__(self) -> str:
        return f"<ComicScene(id={self.id}, order={self.scene_order}, status={self.status})>"
