"""Conversation orchestration - the "send a message" workflow.

The user's message is committed before the provider is called, so a
provider failure never loses the user's input. The assistant reply is
stored in the same chat scope once the provider answers.
"""

import logging
from dataclasses import dataclass

from chatvault.core.config import settings
from chatvault.core.crypto import fingerprint
from chatvault.core.errors import (
    InvalidArgument,
    NoCredentialAvailable,
    ProviderFailure,
    ReplyNotPersisted,
)
from chatvault.models.chat import Message
from chatvault.services.llm.base import BaseLLMProvider
from chatvault.services.store import EntityStore

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are a helpful AI assistant. Provide concise, helpful responses to user questions.

User: {content}"""


@dataclass
class SendResult:
    user_message: Message
    assistant_message: Message

    def to_dict(self) -> dict:
        return {
            "user_message": self.user_message.to_dict(),
            "assistant_message": self.assistant_message.to_dict(),
        }


def build_prompt(content: str) -> str:
    return PROMPT_TEMPLATE.format(content=content)


class ConversationOrchestrator:
    def __init__(
        self,
        store: EntityStore,
        provider: BaseLLMProvider,
        default_credential: str | None = None,
        persist_attempts: int | None = None,
    ):
        self.store = store
        self.provider = provider
        self.default_credential = (
            settings.gemini_api_key if default_credential is None else default_credential
        )
        if persist_attempts is None:
            persist_attempts = settings.reply_persist_attempts
        # The reply is always tried at least once
        self.persist_attempts = max(1, persist_attempts)

    def resolve_credential(self, user_id: str) -> str:
        """The user's own key, else the process-wide default.

        CredentialCorrupt from the store propagates; a corrupt key is not the
        same as a missing one.
        """
        user = self.store.get_user(user_id)
        if user and user.gemini_api_key:
            return user.gemini_api_key
        if self.default_credential:
            return self.default_credential
        raise NoCredentialAvailable()

    async def send_message(self, user_id: str, content: str, chat_id: int | None = None) -> SendResult:
        if content is None or not content.strip():
            raise InvalidArgument("Message content must not be empty")

        # Committed before the external call; never rolled back
        user_message = self.store.create_message(content, "user", user_id=user_id, chat_id=chat_id)

        api_key = self.resolve_credential(user_id)

        logger.info(f"Calling provider for user {user_id} chat {chat_id} key={fingerprint(api_key)}")
        try:
            reply = await self.provider.generate(api_key, build_prompt(content))
        except ProviderFailure:
            raise
        except Exception as e:
            raise ProviderFailure(f"Provider error: {e}") from e
        if not reply or not reply.strip():
            raise ProviderFailure("No response from AI")

        assistant_message = self._persist_reply(reply, user_id, chat_id)
        return SendResult(user_message=user_message, assistant_message=assistant_message)

    def _persist_reply(self, reply: str, user_id: str, chat_id: int | None) -> Message:
        last_error: Exception | None = None
        for attempt in range(1, self.persist_attempts + 1):
            try:
                return self.store.create_message(reply, "assistant", user_id=user_id, chat_id=chat_id)
            except Exception as e:
                last_error = e
                self.store.session.rollback()
                logger.warning(
                    f"Storing assistant reply failed (attempt {attempt}/{self.persist_attempts}): {e}"
                )
        logger.error(f"Assistant reply for user {user_id} chat {chat_id} was not saved")
        raise ReplyNotPersisted(reply) from last_error
