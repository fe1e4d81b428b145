"""Append-only audit trail of privileged mutations."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


class AdminLog(SQLModel, table=True):
    __tablename__ = "admin_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    admin_id: str
    action: str  # UPDATE_USER | DELETE_USER | CREATE_SETTING | UPDATE_SETTING | DELETE_SETTING
    target: Optional[str] = None  # may dangle once the target is deleted
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "admin_id": self.admin_id,
            "action": self.action,
            "target": self.target,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat(),
        }
