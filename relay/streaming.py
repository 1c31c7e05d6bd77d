"""Streaming replies -- progressive message editing for chat completions.

A StreamingReply drives one streamed completion end-to-end: it records the
user turn, posts a placeholder, edits the placeholder as fragments arrive
and finally stores the joined text as the assistant turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from relay.api.completion import CompletionClient
from relay.sessions.schemas import ConversationId, Turn
from relay.sessions.store import ConversationStore
from relay.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)

DEFAULT_EDIT_EVERY = 20
DEFAULT_PLACEHOLDER = "\U0001f4ad"


@dataclass
class StreamAccumulator:
    """Fragments received so far for one in-flight completion."""

    message_id: int
    fragments: list[str] = field(default_factory=list)
    non_empty: int = 0

    def add(self, fragment: str) -> bool:
        """Append a fragment. Returns True if it counted as non-empty."""
        self.fragments.append(fragment)
        if fragment.strip():
            self.non_empty += 1
            return True
        return False

    @property
    def text(self) -> str:
        return "".join(self.fragments)


class EditChain:
    """Issues edits of one message in order, without blocking the caller.

    Each scheduled edit runs as a task that first awaits the previous one,
    so at most one edit call for the message is in flight at a time.
    """

    def __init__(self, transport: Transport, conversation_id: ConversationId, message_id: int) -> None:
        self._transport = transport
        self._conversation_id = conversation_id
        self._message_id = message_id
        self._last: asyncio.Task | None = None
        self.scheduled = 0

    def schedule(self, text: str) -> None:
        """Queue an edit. Raises the error of an earlier edit that already failed."""
        previous = self._last
        if previous is not None and previous.done() and not previous.cancelled():
            error = previous.exception()
            if error is not None:
                raise error
        self._last = asyncio.create_task(self._edit(previous, text))
        self.scheduled += 1
        logger.debug(
            "Scheduled edit #%d for message %s (%d chars)",
            self.scheduled, self._message_id, len(text),
        )

    async def _edit(self, previous: asyncio.Task | None, text: str) -> None:
        if previous is not None:
            await previous
        await self._transport.edit_message(self._conversation_id, self._message_id, text)

    async def drain(self) -> None:
        """Wait for every scheduled edit. Raises the first failure."""
        if self._last is not None:
            await self._last

    def cancel(self) -> None:
        """Cancel outstanding edits (used when the reply is aborted)."""
        last = self._last
        if last is None:
            return
        if not last.done():
            last.cancel()
        elif not last.cancelled():
            # Mark any failure as retrieved; the caller already has its own error
            last.exception()


class StreamingReply:
    """Runs one chat turn against a streaming completion."""

    def __init__(
        self,
        store: ConversationStore,
        client: CompletionClient,
        transport: Transport,
        edit_every: int = DEFAULT_EDIT_EVERY,
        placeholder_text: str = DEFAULT_PLACEHOLDER,
        model: str | None = None,
    ) -> None:
        if edit_every < 1:
            raise ValueError("edit_every must be >= 1")
        self._store = store
        self._client = client
        self._transport = transport
        self._edit_every = edit_every
        self._placeholder_text = placeholder_text
        self._model = model

    async def run(self, message: InboundMessage, text: str) -> Turn:
        """Stream a completion for text and return the stored assistant turn.

        Steps:
        1. Append the user turn, then snapshot history as request context
        2. Send the placeholder as a reply to the triggering message
        3. Open the streaming completion
        4. Edit the placeholder every edit_every non-empty fragments
        5. Final edit with the complete text, always
        6. Append the assistant turn

        Any TransportError or AdapterError aborts the remaining steps. The
        user turn from step 1 is kept.
        """
        conversation_id = message.conversation_id
        logger.info("Complete chat, conversation: %s, content: %s", conversation_id, text)

        await self._store.append(conversation_id, Turn.user(text))
        history = await self._store.snapshot(conversation_id)

        placeholder_id = await self._transport.send_message(
            conversation_id, self._placeholder_text, reply_to=message.message_id
        )
        acc = StreamAccumulator(message_id=placeholder_id)
        edits = EditChain(self._transport, conversation_id, placeholder_id)

        try:
            async for fragment in self._client.complete_streaming(history, model=self._model):
                if acc.add(fragment) and acc.non_empty % self._edit_every == 0:
                    edits.schedule(acc.text)

            await edits.drain()
            await self._transport.edit_message(conversation_id, placeholder_id, acc.text)
        finally:
            edits.cancel()

        turn = Turn.assistant(acc.text)
        await self._store.append(conversation_id, turn)
        logger.info(
            "Chat complete, conversation: %s, fragments: %d, edits: %d",
            conversation_id, len(acc.fragments), edits.scheduled + 1,
        )
        return turn
