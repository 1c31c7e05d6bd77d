"""Shared fixtures: in-memory transport and scripted completion client."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass

import pytest

from relay.errors import AdapterError, TransportError
from relay.sessions import ConversationStore, Turn
from relay.transport import InboundMessage

# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


@dataclass
class SentMessage:
    conversation_id: int | str
    text: str
    reply_to: int | None
    message_id: int


class FakeTransport:
    """Records sends and edits. Can be told to fail specific calls."""

    def __init__(self, edit_delay: float = 0.0) -> None:
        self.sent: list[SentMessage] = []
        self.edits: list[tuple[int | str, int, str]] = []
        self.fail_send = False
        self.fail_edit_on: int | None = None  # 1-based edit call number
        self.edit_delay = edit_delay
        self.edit_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._next_id = 100

    async def send_message(self, conversation_id, text, reply_to=None) -> int:
        if self.fail_send:
            raise TransportError("sendMessage: Bad Request", method="sendMessage")
        self._next_id += 1
        self.sent.append(SentMessage(conversation_id, text, reply_to, self._next_id))
        return self._next_id

    async def edit_message(self, conversation_id, message_id, text) -> None:
        self.edit_calls += 1
        call_number = self.edit_calls
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.edit_delay:
                await asyncio.sleep(self.edit_delay)
            if self.fail_edit_on == call_number:
                raise TransportError("editMessageText: Bad Request", method="editMessageText")
            self.edits.append((conversation_id, message_id, text))
        finally:
            self.in_flight -= 1

    def replies_to(self, conversation_id) -> list[str]:
        return [m.text for m in self.sent if m.conversation_id == conversation_id]


# ---------------------------------------------------------------------------
# Fake completion client
# ---------------------------------------------------------------------------


class FakeCompletionClient:
    """Streams scripted fragments; records every history it was given.

    responder, when set, computes the fragments from the history instead.
    """

    def __init__(
        self,
        fragments: Sequence[str] = (),
        fail_at: int | None = None,
        responder: Callable[[list[Turn]], list[str]] | None = None,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_at = fail_at
        self.responder = responder
        self.histories: list[list[Turn]] = []
        self.models: list[str | None] = []

    async def complete_once(self, history, model=None) -> Turn:
        self.histories.append(list(history))
        return Turn.assistant("".join(self._script(history)))

    async def complete_streaming(self, history, model=None) -> AsyncIterator[str]:
        self.histories.append(list(history))
        self.models.append(model)
        for i, fragment in enumerate(self._script(history)):
            if self.fail_at == i:
                raise AdapterError("stream broke")
            # Yield to the loop like a real network read would
            await asyncio.sleep(0)
            yield fragment
        if self.fail_at is not None and self.fail_at >= len(self._script(history)):
            raise AdapterError("stream broke")

    def _script(self, history) -> list[str]:
        if self.responder is not None:
            return self.responder(list(history))
        return self.fragments


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_message() -> Callable[..., InboundMessage]:
    """Factory for inbound messages with auto-incrementing ids."""
    counter = iter(range(1, 10_000))

    def _make(text: str, conversation_id: int | str = 1) -> InboundMessage:
        return InboundMessage(
            conversation_id=conversation_id,
            message_id=next(counter),
            text=text,
            user_id=42,
        )

    return _make


@pytest.fixture
def make_client() -> Callable[..., FakeCompletionClient]:
    """Factory for scripted completion clients."""
    return FakeCompletionClient


@pytest.fixture
def make_transport() -> Callable[..., FakeTransport]:
    """Factory for fake transports with custom options (e.g. edit_delay)."""
    return FakeTransport
