"""REST API for chat threads."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatvault.api.deps import current_user, get_store
from chatvault.models.chat import Chat
from chatvault.models.user import UserView
from chatvault.services.store import EntityStore

router = APIRouter()
logger = logging.getLogger(__name__)


class ChatCreate(BaseModel):
    title: str = "New Chat"


class ChatRename(BaseModel):
    title: str


def owned_chat(store: EntityStore, chat_id: int, user: UserView) -> Chat:
    chat = store.get_chat(chat_id)
    if not chat or chat.user_id != user.id:
        logger.debug(f"Chat {chat_id} not found for user {user.id}")
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.get("")
async def list_chats(user: UserView = Depends(current_user), store: EntityStore = Depends(get_store)):
    return [c.to_dict() for c in store.list_chats(user.id)]


@router.post("")
async def create_chat(
    body: ChatCreate,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    return store.create_chat(body.title, user.id).to_dict()


@router.put("/{chat_id}")
async def rename_chat(
    chat_id: int,
    body: ChatRename,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    owned_chat(store, chat_id, user)
    return store.rename_chat(chat_id, body.title).to_dict()


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: int,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    owned_chat(store, chat_id, user)
    store.delete_chat(chat_id)
    return {"success": True}


@router.get("/{chat_id}/messages")
async def list_chat_messages(
    chat_id: int,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    owned_chat(store, chat_id, user)
    return [m.to_dict() for m in store.list_messages(user.id, chat_id)]
