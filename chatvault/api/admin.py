"""Admin API - users, global settings, audit log and stats."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from chatvault.api.deps import audit_context, get_auditor, get_store, require_admin
from chatvault.core.config import settings
from chatvault.models.user import UserView
from chatvault.services.audit import AdminAuditor, AuditContext
from chatvault.services.store import EntityStore

router = APIRouter(dependencies=[Depends(require_admin)])


class UserAdminUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    theme_color: str | None = None
    is_admin: bool | None = None
    is_active: bool | None = None
    gemini_api_key: str | None = None


class SettingCreate(BaseModel):
    key: str
    value: str | None = None
    description: str | None = None


class SettingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str | None = None
    value: str | None = None
    description: str | None = None


# --- Users ---


@router.get("/users")
async def list_users(store: EntityStore = Depends(get_store)):
    return [u.public_dict() for u in store.list_users()]


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    body: UserAdminUpdate,
    ctx: AuditContext = Depends(audit_context),
    auditor: AdminAuditor = Depends(get_auditor),
):
    user = auditor.update_user(ctx, user_id, body.model_dump(exclude_unset=True))
    return user.public_dict()


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    ctx: AuditContext = Depends(audit_context),
    auditor: AdminAuditor = Depends(get_auditor),
):
    if user_id == ctx.admin_id:
        raise HTTPException(status_code=400, detail="Admins cannot delete their own account")
    auditor.delete_user(ctx, user_id)
    return {"success": True}


# --- Global settings ---


@router.get("/settings")
async def list_settings(store: EntityStore = Depends(get_store)):
    return [s.to_dict() for s in store.list_settings()]


@router.post("/settings")
async def create_setting(
    body: SettingCreate,
    ctx: AuditContext = Depends(audit_context),
    auditor: AdminAuditor = Depends(get_auditor),
):
    setting = auditor.create_setting(ctx, body.key, value=body.value, description=body.description)
    return setting.to_dict()


@router.put("/settings/{setting_id}")
async def update_setting(
    setting_id: int,
    body: SettingUpdate,
    ctx: AuditContext = Depends(audit_context),
    auditor: AdminAuditor = Depends(get_auditor),
):
    setting = auditor.update_setting(ctx, setting_id, body.model_dump(exclude_unset=True))
    return setting.to_dict()


@router.delete("/settings/{setting_id}")
async def delete_setting(
    setting_id: int,
    ctx: AuditContext = Depends(audit_context),
    auditor: AdminAuditor = Depends(get_auditor),
):
    auditor.delete_setting(ctx, setting_id)
    return {"success": True}


# --- Audit log & stats ---


@router.get("/logs")
async def list_logs(
    limit: int = Query(default=settings.admin_log_limit, ge=1),
    store: EntityStore = Depends(get_store),
):
    return [entry.to_dict() for entry in store.list_admin_logs(limit)]


@router.get("/stats")
async def stats(store: EntityStore = Depends(get_store)):
    return asdict(store.compute_stats())
