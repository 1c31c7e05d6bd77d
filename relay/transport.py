"""Messaging transport contract consumed by the command handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from relay.sessions.schemas import ConversationId


@dataclass(frozen=True)
class InboundMessage:
    """One user message as delivered by the transport."""

    conversation_id: ConversationId
    message_id: int
    text: str
    user_id: int | None = None


class Transport(Protocol):
    """Outbound half of the messaging transport."""

    async def send_message(
        self,
        conversation_id: ConversationId,
        text: str,
        reply_to: int | None = None,
    ) -> int:
        """Send a new message, optionally as a reply. Returns its message id."""
        ...

    async def edit_message(self, conversation_id: ConversationId, message_id: int, text: str) -> None:
        """Replace the text of a previously sent message."""
        ...
