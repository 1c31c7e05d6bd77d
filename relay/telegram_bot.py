"""Telegram bot for the chat relay.

Polls Telegram for messages, runs bot commands against the conversation
store and streams completions back as progressively edited messages.

Usage:
    TELEGRAM_BOT_TOKEN=... OPENAI_API_KEY=... python -m relay.telegram_bot

Environment:
    TELEGRAM_BOT_TOKEN     - Bot token from @BotFather
    OPENAI_API_KEY         - Key for the chat completions endpoint
    RELAY_API_BASE_URL     - Completions base URL (default: https://api.openai.com)
    RELAY_MODEL            - Model name (default: gpt-3.5-turbo)
    RELAY_CHAT_ON_PLAIN_TEXT - Treat non-command text as /chat (default: false)
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import httpx

from relay.api.completion import OpenAICompletionClient
from relay.commands import CommandInterpreter
from relay.config import Settings
from relay.errors import ConfigurationError, TransportError
from relay.sessions import ConversationStore
from relay.sessions.schemas import ConversationId
from relay.streaming import StreamingReply
from relay.transport import InboundMessage

logger = logging.getLogger(__name__)

# Max Telegram message length
TG_MAX_LEN = 4096

TRUNCATED_MARKER = "\n\n(truncated...)"
EMPTY_REPLY = "(empty response)"
NOT_MODIFIED = "message is not modified"


def split_message(text: str, limit: int = TG_MAX_LEN) -> list[str]:
    """Split text into chunks of at most limit chars, preferring newlines."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for line in text.split("\n"):
        # Hard-wrap lines that can never fit
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) + 1 > limit:
            if current:
                chunks.append(current)
            current = line
        else:
            current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


def parse_update(update: dict[str, Any]) -> InboundMessage | None:
    """Convert a getUpdates entry into an InboundMessage, if it carries text."""
    message = update.get("message")
    if not message:
        return None
    text = message.get("text", "")
    if not text.strip():
        return None
    return InboundMessage(
        conversation_id=message["chat"]["id"],
        message_id=message["message_id"],
        text=text,
        user_id=message.get("from", {}).get("id"),
    )


class TelegramTransport:
    """Telegram Bot API client. Failed calls raise TransportError."""

    def __init__(
        self,
        bot_token: str,
        api_url: str = "https://api.telegram.org",
        http: httpx.AsyncClient | None = None,
        poll_timeout: int = 30,
    ) -> None:
        self._base = f"{api_url.rstrip('/')}/bot{bot_token}"
        self._http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=poll_timeout + 30, write=10, pool=10)
        )
        self.poll_timeout = poll_timeout

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Call a Bot API method and return its result."""
        try:
            response = await self._http.post(f"{self._base}/{method}", json=params or {})
        except httpx.HTTPError as e:
            raise TransportError(f"{method} failed: {e!r}", method=method) from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"{method} returned non-JSON response (HTTP {response.status_code})",
                method=method,
            ) from e

        if not data.get("ok"):
            logger.warning("Telegram API error: %s", data)
            raise TransportError(
                f"{method}: {data.get('description', 'unknown error')}", method=method
            )
        return data.get("result")

    async def get_me(self) -> dict[str, Any]:
        return await self.call("getMe")

    async def get_updates(self, offset: int) -> list[dict[str, Any]]:
        return await self.call(
            "getUpdates",
            params={"offset": offset, "timeout": self.poll_timeout, "allowed_updates": ["message"]},
        )

    async def send_message(
        self,
        conversation_id: ConversationId,
        text: str,
        reply_to: int | None = None,
    ) -> int:
        """Send text, split across messages if too long. Returns the last message id."""
        message_id = 0
        for chunk in split_message(text):
            params: dict[str, Any] = {"chat_id": conversation_id, "text": chunk}
            if reply_to is not None:
                params["reply_to_message_id"] = reply_to
            result = await self.call("sendMessage", params=params)
            message_id = result["message_id"]
        return message_id

    async def edit_message(self, conversation_id: ConversationId, message_id: int, text: str) -> None:
        """Edit a message in place. Overlong text is truncated."""
        if not text.strip():
            text = EMPTY_REPLY
        if len(text) > TG_MAX_LEN:
            text = text[: TG_MAX_LEN - len(TRUNCATED_MARKER)] + TRUNCATED_MARKER

        # No parse_mode: partial markdown mid-stream breaks rendering
        try:
            await self.call("editMessageText", params={
                "chat_id": conversation_id,
                "message_id": message_id,
                "text": text,
            })
        except TransportError as e:
            if NOT_MODIFIED in e.message:
                logger.debug("Edit of message %s was a no-op", message_id)
                return
            raise

    async def close(self) -> None:
        await self._http.aclose()


class RelayTelegramBot:
    """Long-polling loop that hands each message to the interpreter as a task."""

    def __init__(
        self,
        transport: TelegramTransport,
        interpreter: CommandInterpreter,
        retry_delay: float = 5.0,
    ) -> None:
        self._transport = transport
        self._interpreter = interpreter
        self._retry_delay = retry_delay
        self._offset = 0
        self._tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start polling loop."""
        me = await self._transport.get_me()
        self._interpreter.bot_username = me.get("username")
        logger.info("Bot started: @%s (%s)", me.get("username"), me.get("id"))

        while True:
            try:
                await self.poll_once()
            except TransportError as e:
                logger.error("Polling error: %s", e)
                await asyncio.sleep(self._retry_delay)

    async def poll_once(self) -> int:
        """Fetch one batch of updates and dispatch them. Returns the batch size."""
        updates = await self._transport.get_updates(self._offset)
        for update in updates:
            self._offset = update["update_id"] + 1
            message = parse_update(update)
            if message is not None:
                self._spawn(message)
        return len(updates)

    def _spawn(self, message: InboundMessage) -> None:
        task = asyncio.create_task(
            self._handle(message), name=f"relay-{message.conversation_id}-{message.message_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, message: InboundMessage) -> None:
        try:
            await self._interpreter.handle(message)
        except Exception:
            logger.exception("Unhandled error for conversation %s", message.conversation_id)

    @property
    def pending(self) -> int:
        """Number of handlers still running."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Wait for in-flight handlers to finish."""
        if self._tasks:
            logger.info("Waiting for %d in-flight handlers", len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)


async def main() -> None:
    """Entry point."""
    settings = Settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings.require_credentials()
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)

    store = ConversationStore()
    client = OpenAICompletionClient(settings)
    await client.start()
    transport = TelegramTransport(
        settings.telegram_bot_token,
        api_url=settings.telegram_api_url,
        poll_timeout=settings.poll_timeout,
    )
    streaming = StreamingReply(
        store,
        client,
        transport,
        edit_every=settings.edit_every,
        placeholder_text=settings.placeholder_text,
        model=settings.model,
    )
    interpreter = CommandInterpreter(
        store,
        streaming,
        transport,
        chat_on_plain_text=settings.chat_on_plain_text,
    )
    bot = RelayTelegramBot(transport, interpreter, retry_delay=settings.poll_retry_delay)

    try:
        await bot.start()
    finally:
        await bot.shutdown()
        await transport.close()
        await client.close()


def run() -> None:
    """Console script wrapper."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
