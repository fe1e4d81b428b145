"""Current-user endpoints: profile and provider API key."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from chatvault.api.deps import current_user, get_store
from chatvault.models.user import UserView
from chatvault.services.store import EntityStore

router = APIRouter()


class ApiKeyUpdate(BaseModel):
    api_key: str | None = None


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    theme_color: str | None = None


@router.get("/user")
async def get_current_user(
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    return store.get_profile(user.id).public_dict()


@router.post("/api-key")
async def set_api_key(
    body: ApiKeyUpdate,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    updated = store.set_user_credential(user.id, body.api_key)
    return updated.public_dict()


@router.put("/profile")
async def update_profile(
    body: ProfileUpdate,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    updated = store.update_user_profile(user.id, body.model_dump(exclude_unset=True))
    return updated.public_dict()
