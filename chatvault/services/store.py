"""EntityStore - single point of truth for users, chats, messages, settings and audit logs.

Credentials are sealed on every write, so the database only ever sees tokens.
They are opened only by the reads that need them: identity lookups never
decrypt, and display reads flag a credential that fails to open instead of
raising.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from chatvault.core.config import settings
from chatvault.core.crypto import CredentialCipher, fingerprint, get_cipher
from chatvault.core.errors import Conflict, CredentialCorrupt, InvalidArgument, NotFound
from chatvault.models.admin_log import AdminLog
from chatvault.models.chat import MESSAGE_ROLES, Chat, Message
from chatvault.models.setting import GlobalSetting
from chatvault.models.user import KEY_CORRUPT, KEY_NONE, KEY_SET, THEME_COLORS, User, UserView

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {"first_name", "last_name", "profile_image_url", "theme_color"}
ADMIN_USER_FIELDS = PROFILE_FIELDS | {"email", "is_admin", "is_active", "gemini_api_key"}
SETTING_FIELDS = {"key", "value", "description"}

_SETTING_KEY = re.compile(r"[A-Za-z0-9_.\-]{1,128}")


@dataclass
class AdminStats:
    total_users: int
    active_users: int
    total_messages: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: str | None, what: str) -> str:
    if value is None or not value.strip():
        raise InvalidArgument(f"{what} must not be empty")
    return value


class EntityStore:
    def __init__(self, session: Session, cipher: CredentialCipher | None = None):
        self.session = session
        self.cipher = cipher or get_cipher()

    # --- helpers ---

    def _commit(self, what: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise Conflict(f"{what} conflicts with an existing record") from e

    def _build_view(self, user: User, credential: str | None, status: str) -> UserView:
        data = user.model_dump(exclude={"gemini_api_key"})
        return UserView(
            **data,
            gemini_api_key=credential or None,
            api_key_fingerprint=fingerprint(credential) if credential else None,
            api_key_status=status,
        )

    def _identity_view(self, user: User) -> UserView:
        return self._build_view(user, None, KEY_SET if user.gemini_api_key else KEY_NONE)

    def _view(self, user: User, plaintext: str | None = None, strict: bool = False) -> UserView:
        """Decrypted view of ``user``.

        With ``strict`` a credential that fails to open raises CredentialCorrupt.
        Otherwise the view is returned without it and flagged as corrupt, so one
        bad row never takes down profile or listing endpoints.
        """
        credential = plaintext
        if credential is None and user.gemini_api_key:
            try:
                credential = self.cipher.open(user.gemini_api_key)
            except CredentialCorrupt:
                if strict:
                    raise
                logger.warning(f"Stored API key for user {user.id} cannot be decrypted")
                return self._build_view(user, None, KEY_CORRUPT)
        return self._build_view(user, credential, KEY_SET if credential else KEY_NONE)

    def _get_user_row(self, user_id: str) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound(f"User {user_id} not found")
        return user

    def _apply_user_fields(self, user: User, partial: dict[str, Any], allowed: set[str]) -> str | None:
        """Copy supplied fields onto ``user``. Returns the new plaintext credential, if any."""
        unknown = set(partial) - allowed
        if unknown:
            raise InvalidArgument(f"Cannot update user fields: {', '.join(sorted(unknown))}")

        if "theme_color" in partial and partial["theme_color"] not in THEME_COLORS:
            raise InvalidArgument(
                f"theme_color must be one of {', '.join(THEME_COLORS)}, got {partial['theme_color']!r}"
            )

        plaintext = None
        for field, value in partial.items():
            if field == "gemini_api_key":
                plaintext = value or None
                value = self.cipher.seal(value) if value else None
            elif field == "email":
                value = value or None
            setattr(user, field, value)
        user.updated_at = _now()
        return plaintext

    # --- users ---

    def get_user(self, user_id: str) -> UserView | None:
        """The user with the credential decrypted. A corrupt credential raises."""
        user = self.session.get(User, user_id)
        if not user:
            return None
        return self._view(user, strict=True)

    def get_profile(self, user_id: str) -> UserView | None:
        """Like get_user, but a corrupt credential is flagged instead of raised."""
        user = self.session.get(User, user_id)
        if not user:
            return None
        return self._view(user)

    def get_identity(self, user_id: str) -> UserView | None:
        """The user without touching the credential at all."""
        user = self.session.get(User, user_id)
        if not user:
            return None
        return self._identity_view(user)

    def record_login(self, user_id: str) -> UserView:
        user = self._get_user_row(user_id)
        user.last_login_at = _now()
        self.session.add(user)
        self._commit("User")
        self.session.refresh(user)
        return self._identity_view(user)

    def upsert_user(self, data: dict[str, Any], record_login: bool = False) -> UserView:
        """Insert or merge a user keyed by ``data["id"]``.

        Only the supplied fields are written, so a login that carries just an
        email and a name does not wipe the stored credential or theme.
        """
        fields = dict(data)
        user_id = fields.pop("id", None)
        if not user_id:
            raise InvalidArgument("User id is required")

        user = self.session.get(User, user_id)
        created = user is None
        if created:
            user = User(id=user_id)
        plaintext = self._apply_user_fields(user, fields, ADMIN_USER_FIELDS)
        if record_login:
            user.last_login_at = _now()
        self.session.add(user)

        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            # Another request inserted the same id first; merge into its row.
            if not created or self.session.get(User, user_id) is None:
                raise Conflict(f"User {user_id} conflicts with an existing record") from e
            return self.upsert_user(data, record_login=record_login)

        self.session.refresh(user)
        if created:
            logger.info(f"Created user {user_id}")
        return self._view(user, plaintext)

    def set_user_credential(self, user_id: str, plaintext: str | None) -> UserView:
        user = self._get_user_row(user_id)
        self._apply_user_fields(user, {"gemini_api_key": plaintext}, {"gemini_api_key"})
        self.session.add(user)
        self._commit("User")
        self.session.refresh(user)
        if plaintext:
            logger.info(f"Stored API key {fingerprint(plaintext)} for user {user_id}")
        else:
            logger.info(f"Cleared API key for user {user_id}")
        # Re-attach the plaintext so the caller can use it without another decrypt
        return self._view(user, plaintext or None)

    def update_user_profile(self, user_id: str, partial: dict[str, Any]) -> UserView:
        user = self._get_user_row(user_id)
        self._apply_user_fields(user, partial, PROFILE_FIELDS)
        self.session.add(user)
        self._commit("User")
        self.session.refresh(user)
        return self._view(user)

    def list_users(self) -> list[UserView]:
        users = self.session.exec(
            select(User).order_by(User.created_at.desc())  # type: ignore
        ).all()
        return [self._view(u) for u in users]

    def update_user(self, user_id: str, partial: dict[str, Any]) -> UserView:
        user = self._get_user_row(user_id)
        plaintext = self._apply_user_fields(user, partial, ADMIN_USER_FIELDS)
        self.session.add(user)
        self._commit("User")
        self.session.refresh(user)
        return self._view(user, plaintext)

    def delete_user(self, user_id: str) -> None:
        """Delete a user with its messages, then its chats, then the user row."""
        chat_ids = self.session.exec(select(Chat.id).where(Chat.user_id == user_id)).all()
        messages = self.session.exec(
            select(Message).where(
                or_(Message.user_id == user_id, Message.chat_id.in_(chat_ids))  # type: ignore
            )
        ).all()
        for msg in messages:
            self.session.delete(msg)
        self.session.flush()

        for chat in self.session.exec(select(Chat).where(Chat.user_id == user_id)).all():
            self.session.delete(chat)
        self.session.flush()

        user = self.session.get(User, user_id)
        if user:
            self.session.delete(user)
        self.session.commit()
        logger.debug(f"Deleted user {user_id} with {len(messages)} messages and {len(chat_ids)} chats")

    def set_single_admin(self, email: str) -> str:
        """Make the user with ``email`` the only admin. Returns that user's id."""
        target = self.session.exec(select(User).where(User.email == email)).first()
        if not target:
            raise NotFound(f"No user with email {email}")
        for user in self.session.exec(select(User).where(User.is_admin == True)).all():  # noqa: E712
            user.is_admin = False
            self.session.add(user)
        target.is_admin = True
        target.updated_at = _now()
        self.session.add(target)
        self.session.commit()
        return target.id

    # --- chats ---

    def list_chats(self, user_id: str) -> list[Chat]:
        return list(
            self.session.exec(
                select(Chat)
                .where(Chat.user_id == user_id)
                .order_by(Chat.updated_at.desc(), Chat.id.desc())  # type: ignore
            ).all()
        )

    def get_chat(self, chat_id: int) -> Chat | None:
        return self.session.get(Chat, chat_id)

    def create_chat(self, title: str, user_id: str) -> Chat:
        chat = Chat(title=_require_text(title, "Chat title").strip(), user_id=user_id)
        self.session.add(chat)
        self._commit("Chat")
        self.session.refresh(chat)
        return chat

    def rename_chat(self, chat_id: int, title: str) -> Chat:
        title = _require_text(title, "Chat title").strip()
        chat = self.session.get(Chat, chat_id)
        if not chat:
            raise NotFound(f"Chat {chat_id} not found")
        chat.title = title
        chat.updated_at = _now()
        self.session.add(chat)
        self.session.commit()
        self.session.refresh(chat)
        return chat

    def delete_chat(self, chat_id: int) -> None:
        # Delete messages first so none are left pointing at a missing chat
        messages = self.session.exec(select(Message).where(Message.chat_id == chat_id)).all()
        for msg in messages:
            self.session.delete(msg)
        self.session.flush()

        chat = self.session.get(Chat, chat_id)
        if chat:
            self.session.delete(chat)
        self.session.commit()
        logger.debug(f"Deleted chat {chat_id} with {len(messages)} messages")

    # --- messages ---

    def list_messages(self, user_id: str | None = None, chat_id: int | None = None) -> list[Message]:
        """Messages in timestamp order, insertion order breaking ties.

        With neither argument this returns every message (legacy global mode);
        only reachable behind an authenticated route.
        """
        query = select(Message)
        if user_id is not None:
            query = query.where(Message.user_id == user_id)
        if chat_id is not None:
            query = query.where(Message.chat_id == chat_id)
        return list(
            self.session.exec(query.order_by(Message.timestamp, Message.id)).all()  # type: ignore
        )

    def get_message(self, message_id: int) -> Message | None:
        return self.session.get(Message, message_id)

    def create_message(
        self,
        content: str,
        role: str,
        user_id: str | None = None,
        chat_id: int | None = None,
    ) -> Message:
        _require_text(content, "Message content")
        if role not in MESSAGE_ROLES:
            raise InvalidArgument(f"role must be one of {', '.join(MESSAGE_ROLES)}, got {role!r}")

        now = _now()
        msg = Message(content=content, role=role, user_id=user_id, chat_id=chat_id, timestamp=now)
        self.session.add(msg)
        if chat_id is not None:
            chat = self.session.get(Chat, chat_id)
            if chat:
                chat.updated_at = now
                self.session.add(chat)
        self._commit("Message")
        self.session.refresh(msg)
        return msg

    def edit_message(self, message_id: int, content: str) -> Message:
        _require_text(content, "Message content")
        msg = self.session.get(Message, message_id)
        if not msg:
            raise NotFound(f"Message {message_id} not found")
        msg.content = content
        self.session.add(msg)
        self.session.commit()
        self.session.refresh(msg)
        return msg

    def delete_message(self, message_id: int) -> None:
        msg = self.session.get(Message, message_id)
        if msg:
            self.session.delete(msg)
            self.session.commit()

    # --- global settings ---

    def _validate_key(self, key: str | None) -> str:
        if not key or not _SETTING_KEY.fullmatch(key):
            raise InvalidArgument(f"Malformed setting key {key!r}")
        return key

    def list_settings(self) -> list[GlobalSetting]:
        return list(self.session.exec(select(GlobalSetting).order_by(GlobalSetting.key)).all())

    def get_setting(self, setting_id: int) -> GlobalSetting | None:
        return self.session.get(GlobalSetting, setting_id)

    def get_setting_by_key(self, key: str) -> GlobalSetting | None:
        return self.session.exec(select(GlobalSetting).where(GlobalSetting.key == key)).first()

    def create_setting(
        self, key: str, value: str | None = None, description: str | None = None
    ) -> GlobalSetting:
        key = self._validate_key(key)
        if self.get_setting_by_key(key):
            raise Conflict(f"Setting {key!r} already exists")
        setting = GlobalSetting(key=key, value=value, description=description)
        self.session.add(setting)
        self._commit(f"Setting {key!r}")
        self.session.refresh(setting)
        return setting

    def update_setting(self, setting_id: int, partial: dict[str, Any]) -> GlobalSetting:
        unknown = set(partial) - SETTING_FIELDS
        if unknown:
            raise InvalidArgument(f"Cannot update setting fields: {', '.join(sorted(unknown))}")
        setting = self.session.get(GlobalSetting, setting_id)
        if not setting:
            raise NotFound(f"Setting {setting_id} not found")

        if "key" in partial:
            key = self._validate_key(partial["key"])
            existing = self.get_setting_by_key(key)
            if existing and existing.id != setting.id:
                raise Conflict(f"Setting {key!r} already exists")
        for field, value in partial.items():
            setattr(setting, field, value)
        setting.updated_at = _now()
        self.session.add(setting)
        self._commit(f"Setting {setting.key!r}")
        self.session.refresh(setting)
        return setting

    def delete_setting(self, setting_id: int) -> GlobalSetting | None:
        """Delete a setting. Returns the removed row, or None if it did not exist."""
        setting = self.session.get(GlobalSetting, setting_id)
        if not setting:
            return None
        removed = GlobalSetting.model_validate(setting.model_dump())
        self.session.delete(setting)
        self.session.commit()
        return removed

    # --- audit log ---

    def append_admin_log(
        self,
        admin_id: str,
        action: str,
        target: str | None = None,
        details: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AdminLog:
        entry = AdminLog(
            admin_id=admin_id,
            action=action,
            target=target,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def list_admin_logs(self, limit: int | None = None) -> list[AdminLog]:
        """Most recent entries first, never more than ``settings.admin_log_limit``."""
        if limit is None:
            limit = settings.admin_log_limit
        if limit < 1:
            raise InvalidArgument("limit must be positive")
        limit = min(limit, settings.admin_log_limit)
        return list(
            self.session.exec(
                select(AdminLog)
                .order_by(AdminLog.created_at.desc(), AdminLog.id.desc())  # type: ignore
                .limit(limit)
            ).all()
        )

    # --- stats ---

    def compute_stats(self) -> AdminStats:
        total_users = self.session.exec(select(func.count()).select_from(User)).one()
        active_users = self.session.exec(
            select(func.count()).select_from(User).where(User.is_active == True)  # noqa: E712
        ).one()
        total_messages = self.session.exec(select(func.count()).select_from(Message)).one()
        return AdminStats(
            total_users=total_users,
            active_users=active_users,
            total_messages=total_messages,
        )
