"""Admin auditing - privileged mutations that leave an AdminLog entry behind.

The mutation is the primary operation. Writing the log entry is best effort:
a failure is logged and the mutation still counts as successful.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from chatvault.core.crypto import fingerprint
from chatvault.models.setting import GlobalSetting
from chatvault.models.user import UserView
from chatvault.services.store import EntityStore

logger = logging.getLogger(__name__)

UPDATE_USER = "UPDATE_USER"
DELETE_USER = "DELETE_USER"
CREATE_SETTING = "CREATE_SETTING"
UPDATE_SETTING = "UPDATE_SETTING"
DELETE_SETTING = "DELETE_SETTING"


@dataclass
class AuditContext:
    """Who performed the action and where the request came from."""

    admin_id: str
    ip_address: str | None = None
    user_agent: str | None = None


def _snapshot(changes: dict[str, Any]) -> str:
    """Serialize a change set, replacing any credential by its fingerprint."""
    safe = dict(changes)
    if safe.get("gemini_api_key"):
        safe["gemini_api_key"] = f"fingerprint:{fingerprint(safe['gemini_api_key'])}"
    return json.dumps(safe, default=str, sort_keys=True)


class AdminAuditor:
    def __init__(self, store: EntityStore):
        self.store = store

    def _append(self, ctx: AuditContext, action: str, target: str | None, details: str) -> None:
        try:
            self.store.append_admin_log(
                admin_id=ctx.admin_id,
                action=action,
                target=target,
                details=details,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
        except Exception:
            self.store.session.rollback()
            logger.exception(f"Failed to record {action} on {target} by {ctx.admin_id}")

    def update_user(self, ctx: AuditContext, user_id: str, partial: dict[str, Any]) -> UserView:
        user = self.store.update_user(user_id, partial)
        self._append(ctx, UPDATE_USER, user_id, _snapshot(partial))
        return user

    def delete_user(self, ctx: AuditContext, user_id: str) -> None:
        self.store.delete_user(user_id)
        self._append(ctx, DELETE_USER, user_id, "User account deleted")

    def create_setting(
        self, ctx: AuditContext, key: str, value: str | None = None, description: str | None = None
    ) -> GlobalSetting:
        setting = self.store.create_setting(key, value=value, description=description)
        self._append(
            ctx,
            CREATE_SETTING,
            setting.key,
            _snapshot({"key": key, "value": value, "description": description}),
        )
        return setting

    def update_setting(self, ctx: AuditContext, setting_id: int, partial: dict[str, Any]) -> GlobalSetting:
        setting = self.store.update_setting(setting_id, partial)
        self._append(ctx, UPDATE_SETTING, setting.key, _snapshot(partial))
        return setting

    def delete_setting(self, ctx: AuditContext, setting_id: int) -> None:
        removed = self.store.delete_setting(setting_id)
        if removed is None:
            return
        self._append(ctx, DELETE_SETTING, str(setting_id), f"Global setting {removed.key!r} deleted")
