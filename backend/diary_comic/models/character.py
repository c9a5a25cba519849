"""
角色模型

角色是用户此前生成并保存的头像，漫画生成时作为参考图使用。
生成流程对角色只读，使用前必须校验归属。
"""

import uuid
from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..db.base import Base
from .mixins import TimestampsMixin


class Character(TimestampsMixin, Base):
    """用户角色"""

    __tablename__ = "characters"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar_url: Mapped[str] = mapped_column(Text(), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text())

    def to_snapshot(self) -> dict:
        """场景中保存的角色快照，重试时据此重新拼接参考图"""
        return {"id": self.id, "name": self.name, "avatar_url": self.avatar_url}

    def __repr__(self) -> str:
        return f"<Character(id={self.id}, name={self.name}, user={self.user_id})>"
