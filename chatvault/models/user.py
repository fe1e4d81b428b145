"""User accounts and the decrypted view handed to callers."""

from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel

THEME_COLORS = ("blue", "green", "red")

# How much the caller can know about the stored credential without trusting it
KEY_NONE = "none"
KEY_SET = "set"
KEY_CORRUPT = "corrupt"


class User(SQLModel, table=True):
    id: str = Field(primary_key=True)  # stable id from the auth layer
    email: Optional[str] = Field(default=None, unique=True, index=True)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    gemini_api_key: Optional[str] = None  # sealed token, never plaintext
    theme_color: str = Field(default="blue")  # blue | green | red
    is_admin: bool = Field(default=False)
    is_active: bool = Field(default=True)
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class UserView(SQLModel):
    """User as returned by the store: credential decrypted, in memory only."""

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    gemini_api_key: Optional[str] = None
    api_key_fingerprint: Optional[str] = None
    api_key_status: str = KEY_NONE  # none | set | corrupt
    theme_color: str = "blue"
    is_admin: bool = False
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    def public_dict(self) -> dict:
        """Serializable form without the credential itself."""
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "profile_image_url": self.profile_image_url,
            "theme_color": self.theme_color,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "has_api_key": self.api_key_status != KEY_NONE,
            "api_key_status": self.api_key_status,
            "api_key_fingerprint": self.api_key_fingerprint,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
