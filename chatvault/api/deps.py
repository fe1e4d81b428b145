"""Shared FastAPI dependencies: store, provider, orchestrator and identity."""

from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from chatvault.core.config import settings
from chatvault.core.crypto import get_cipher
from chatvault.core.database import get_session
from chatvault.models.user import UserView
from chatvault.services.audit import AdminAuditor, AuditContext
from chatvault.services.conversation import ConversationOrchestrator
from chatvault.services.llm import get_llm_provider
from chatvault.services.llm.base import BaseLLMProvider
from chatvault.services.store import EntityStore


def get_store(session: Session = Depends(get_session)) -> EntityStore:
    return EntityStore(session, get_cipher())


def get_provider() -> BaseLLMProvider:
    return get_llm_provider()


def get_orchestrator(
    store: EntityStore = Depends(get_store),
    provider: BaseLLMProvider = Depends(get_provider),
) -> ConversationOrchestrator:
    return ConversationOrchestrator(store, provider)


def get_auditor(store: EntityStore = Depends(get_store)) -> AdminAuditor:
    return AdminAuditor(store)


def _login_is_stale(last_login_at: datetime | None) -> bool:
    if last_login_at is None:
        return True
    # SQLite hands back naive datetimes
    if last_login_at.tzinfo is None:
        last_login_at = last_login_at.replace(tzinfo=timezone.utc)
    age = datetime.now(timezone.utc) - last_login_at
    return age > timedelta(minutes=settings.login_refresh_minutes)


async def current_user(request: Request, store: EntityStore = Depends(get_store)) -> UserView:
    """Identity comes from the upstream auth layer via a trusted header.

    A user seen for the first time is materialized here. The stored API key
    is never decrypted on this path, so a key that no longer opens cannot lock
    its owner out. ``last_login_at`` is refreshed once a session has gone idle.
    """
    user_id = request.headers.get(settings.user_id_header)
    if not user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = store.get_identity(user_id)
    if user is None:
        user = store.upsert_user({"id": user_id}, record_login=True)
    elif _login_is_stale(user.last_login_at):
        user = store.record_login(user_id)
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is disabled")
    return user


async def require_admin(user: UserView = Depends(current_user)) -> UserView:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def audit_context(request: Request, admin: UserView = Depends(require_admin)) -> AuditContext:
    return AuditContext(
        admin_id=admin.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
