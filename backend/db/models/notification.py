"""In-app notification model."""

from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.constants import NotificationPriority
from db.base import BaseModel


class Notification(BaseModel):
    """Notification shown to a user inside the application.

    Created by ``notification`` workflow steps.
    """

    __tablename__ = "notifications"

    user_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    title: Mapped[str] = mapped_column(nullable=False, default="")
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    priority: Mapped[str] = mapped_column(default=NotificationPriority.NORMAL.value)
    is_read: Mapped[bool] = mapped_column(default=False, index=True)
    data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
