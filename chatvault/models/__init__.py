# Imported by init_db so every table is registered on SQLModel.metadata.
from chatvault.models.admin_log import AdminLog  # noqa: F401
from chatvault.models.chat import Chat, Message  # noqa: F401
from chatvault.models.setting import GlobalSetting  # noqa: F401
from chatvault.models.user import User, UserView  # noqa: F401

__all__ = ["AdminLog", "Chat", "GlobalSetting", "Message", "User", "UserView"]
