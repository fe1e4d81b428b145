"""Chat threads and their messages."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

MESSAGE_ROLES = ("user", "assistant")


class Chat(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(default="New Chat")
    user_id: str = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    content: str
    role: str  # "user" | "assistant"
    # Both optional: legacy rows predate per-user chats
    user_id: Optional[str] = Field(default=None, foreign_key="user.id", index=True)
    chat_id: Optional[int] = Field(default=None, foreign_key="chat.id", index=True)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "user_id": self.user_id,
            "chat_id": self.chat_id,
            "timestamp": self.timestamp.isoformat(),
        }
