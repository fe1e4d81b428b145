"""REST API for sending, editing and deleting messages."""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from chatvault.api.chats import owned_chat
from chatvault.api.deps import current_user, get_orchestrator, get_store
from chatvault.models.user import UserView
from chatvault.services.conversation import ConversationOrchestrator
from chatvault.services.store import EntityStore

router = APIRouter()


class MessageSend(BaseModel):
    content: str
    chat_id: int | None = None


class MessageEdit(BaseModel):
    content: str


@router.get("")
async def list_messages(user: UserView = Depends(current_user), store: EntityStore = Depends(get_store)):
    """All of the user's messages across chats (older clients without chats)."""
    return [m.to_dict() for m in store.list_messages(user.id)]


@router.post("")
async def send_message(
    body: MessageSend,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    if body.chat_id is not None:
        owned_chat(store, body.chat_id, user)
    result = await orchestrator.send_message(user.id, body.content, chat_id=body.chat_id)
    return result.to_dict()


@router.put("/{message_id}")
async def edit_message(
    message_id: int,
    body: MessageEdit,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    msg = store.get_message(message_id)
    if not msg or msg.user_id != user.id:
        raise HTTPException(status_code=404, detail="Message not found")
    if msg.role != "user":
        raise HTTPException(status_code=400, detail="Only your own messages can be edited")
    return store.edit_message(message_id, body.content).to_dict()


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    user: UserView = Depends(current_user),
    store: EntityStore = Depends(get_store),
):
    msg = store.get_message(message_id)
    if msg and msg.user_id != user.id:
        raise HTTPException(status_code=404, detail="Message not found")
    store.delete_message(message_id)
    return {"success": True}
