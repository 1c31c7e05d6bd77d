"""Conversation store — in-memory turn history per conversation.

Each conversation gets its own asyncio.Lock, created on first reference,
so unrelated chats never wait on each other. The registry lock only guards
creation of new entries. No lock is ever held across network I/O: every
operation here is a short in-memory read or write.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from relay.sessions.schemas import ConversationId, Turn

logger = logging.getLogger(__name__)


@dataclass
class _Conversation:
    """History plus the lock that serializes access to it."""

    turns: list[Turn] = field(default_factory=list)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationStore:
    """Ordered turn history keyed by conversation id.

    Histories are append-only except for reset() and clear(), which replace
    the whole sequence atomically. Lives for the process lifetime.
    """

    def __init__(self) -> None:
        self._conversations: dict[ConversationId, _Conversation] = {}
        self._registry_lock = asyncio.Lock()

    async def _entry(self, conversation_id: ConversationId) -> _Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is not None:
            return conversation
        async with self._registry_lock:
            # Re-check: another task may have created it while we waited
            conversation = self._conversations.get(conversation_id)
            if conversation is None:
                conversation = _Conversation()
                self._conversations[conversation_id] = conversation
                logger.debug("Created history for conversation %s", conversation_id)
            return conversation

    async def append(self, conversation_id: ConversationId, turn: Turn) -> None:
        """Add turn to the end of the conversation's history."""
        conversation = await self._entry(conversation_id)
        async with conversation.lock:
            conversation.turns.append(turn)

    async def snapshot(self, conversation_id: ConversationId) -> list[Turn]:
        """Return a copy of the history, stable against later mutation."""
        conversation = await self._entry(conversation_id)
        async with conversation.lock:
            return list(conversation.turns)

    async def reset(self, conversation_id: ConversationId, system_text: str) -> None:
        """Replace the history with a single system turn."""
        conversation = await self._entry(conversation_id)
        async with conversation.lock:
            conversation.turns = [Turn.system(system_text)]

    async def clear(self, conversation_id: ConversationId) -> None:
        """Empty the history, system turn included."""
        conversation = await self._entry(conversation_id)
        async with conversation.lock:
            conversation.turns = []

    async def is_empty(self, conversation_id: ConversationId) -> bool:
        conversation = await self._entry(conversation_id)
        async with conversation.lock:
            return not conversation.turns

    def conversation_ids(self) -> list[ConversationId]:
        """Ids of every conversation referenced so far."""
        return list(self._conversations)

    def __len__(self) -> int:
        return len(self._conversations)
