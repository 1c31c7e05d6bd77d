"""Sessions module — per-conversation turn history.

Public API: ConversationStore + the Turn schema types.
"""

from relay.sessions.schemas import ConversationId, Role, Turn
from relay.sessions.store import ConversationStore

__all__ = ["ConversationId", "ConversationStore", "Role", "Turn"]
