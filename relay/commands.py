"""Bot commands -- parsing and dispatch.

Commands are plain tagged variants produced by a string-prefix parser:

    /help            Help()
    /prompt <text>   Prompt(text)
    /chat <text>     Chat(text)
    /view            View()
    /clear           Clear()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from relay.errors import RelayError
from relay.sessions.schemas import Turn
from relay.sessions.store import ConversationStore
from relay.streaming import StreamingReply
from relay.transport import InboundMessage, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class Prompt:
    text: str


@dataclass(frozen=True)
class Chat:
    text: str


@dataclass(frozen=True)
class View:
    pass


@dataclass(frozen=True)
class Clear:
    pass


Command = Help | Prompt | Chat | View | Clear

# keyword -> description, in help order
COMMAND_DESCRIPTIONS: dict[str, str] = {
    "help": "display this text.",
    "prompt": "set prompt text.",
    "chat": "chat with gpt.",
    "view": "view chat histories.",
    "clear": "clear history chats.",
}

HELP_TEXT = "These commands are supported:\n\n" + "\n".join(
    f"/{name} — {description}" for name, description in COMMAND_DESCRIPTIONS.items()
)

PROMPT_SET = "Prompt set."
HISTORY_EMPTY = "Empty chat history."
HISTORY_CLEARED = "Chat histories cleared."
CHAT_USAGE = "Usage: /chat <text>"


def parse_command(text: str, bot_username: str | None = None) -> Command | None:
    """Parse a slash command. Returns None if text is not a known command.

    Accepts the /cmd@botname form used in group chats; the suffix must match
    bot_username when one is known.
    """
    if not text.startswith("/"):
        return None

    # Any whitespace (space, tab, newline) separates the keyword from its argument
    parts = text[1:].split(maxsplit=1)
    if not parts:
        return None
    head = parts[0]
    rest = parts[1] if len(parts) > 1 else ""
    keyword, _, mention = head.partition("@")
    if mention and bot_username and mention.lower() != bot_username.lower():
        return None

    keyword = keyword.lower()
    argument = rest.strip()

    if keyword == "help":
        return Help()
    if keyword == "prompt":
        return Prompt(argument)
    if keyword == "chat":
        return Chat(argument)
    if keyword == "view":
        return View()
    if keyword == "clear":
        return Clear()
    return None


def format_history(turns: Sequence[Turn]) -> str:
    """Render history as "role: text" blocks separated by blank lines."""
    if not turns:
        return HISTORY_EMPTY
    return "\n\n".join(f"{turn.role}: {turn.text.strip()}" for turn in turns)


class CommandInterpreter:
    """Routes inbound messages to the store and the streaming reply."""

    def __init__(
        self,
        store: ConversationStore,
        streaming: StreamingReply,
        transport: Transport,
        bot_username: str | None = None,
        chat_on_plain_text: bool = False,
    ) -> None:
        self._store = store
        self._streaming = streaming
        self._transport = transport
        self.bot_username = bot_username
        self.chat_on_plain_text = chat_on_plain_text

    def resolve(self, message: InboundMessage) -> Command | None:
        """Turn an inbound message into a command, if it is one."""
        command = parse_command(message.text, self.bot_username)
        if command is not None:
            return command
        if self.chat_on_plain_text and not message.text.startswith("/"):
            text = message.text.strip()
            if text:
                return Chat(text)
        return None

    async def handle(self, message: InboundMessage) -> None:
        """Handle one inbound message. Never raises RelayError.

        Failures are logged and reported back to the user as a reply.
        """
        command = self.resolve(message)
        if command is None:
            return

        try:
            await self.dispatch(command, message)
        except RelayError as e:
            logger.error(
                "%s failed for conversation %s: %s",
                type(command).__name__, message.conversation_id, e,
            )
            await self._notify_failure(message, e)

    async def dispatch(self, command: Command, message: InboundMessage) -> None:
        """Execute one command. Errors propagate to the caller."""
        conversation_id = message.conversation_id

        if isinstance(command, Help):
            await self._transport.send_message(conversation_id, HELP_TEXT)

        elif isinstance(command, Prompt):
            logger.info("Set prompt, conversation: %s, prompt: %s", conversation_id, command.text)
            await self._store.reset(conversation_id, command.text)
            await self._reply(message, PROMPT_SET)

        elif isinstance(command, Chat):
            if not command.text:
                await self._reply(message, CHAT_USAGE)
                return
            await self._streaming.run(message, command.text)

        elif isinstance(command, View):
            turns = await self._store.snapshot(conversation_id)
            await self._reply(message, format_history(turns))

        elif isinstance(command, Clear):
            logger.info("Clear history, conversation: %s", conversation_id)
            await self._store.clear(conversation_id)
            await self._reply(message, HISTORY_CLEARED)

    async def _reply(self, message: InboundMessage, text: str) -> int:
        return await self._transport.send_message(
            message.conversation_id, text, reply_to=message.message_id
        )

    async def _notify_failure(self, message: InboundMessage, error: RelayError) -> None:
        try:
            await self._reply(message, f"❌ Error: {error.message}")
        except RelayError as e:
            logger.warning(
                "Could not report failure to conversation %s: %s",
                message.conversation_id, e,
            )
