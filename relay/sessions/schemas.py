"""Pydantic DTOs for conversation turns."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

Role = Literal["system", "user", "assistant"]

# Chat id supplied by the transport (Telegram uses ints)
ConversationId = int | str


class Turn(BaseModel):
    """One role-tagged message in a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    text: str

    @classmethod
    def system(cls, text: str) -> Turn:
        return cls(role="system", text=text)

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role="user", text=text)

    @classmethod
    def assistant(cls, text: str) -> Turn:
        return cls(role="assistant", text=text)

    def to_api(self) -> dict[str, str]:
        """Render as a chat completions message dict."""
        return {"role": self.role, "content": self.text}
