from __future__ import annotations

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    short_info: Mapped[str] = mapped_column(Text, nullable=True)

    resources: Mapped[list["Resource"]] = relationship(
        "Resource",
        back_populates="organization",
    )
    members: Mapped[list["User"]] = relationship(
        "User",
        back_populates="organization",
    )
