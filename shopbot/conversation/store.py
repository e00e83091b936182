import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from shopbot.common.logging_setup import get_logger

logger = get_logger("shopbot.conversation")


@dataclass
class ConversationState:
    """Where one chat is in a multi-turn exchange. `flow` is a typed draft (see drafts.py) or None."""
    flow: Optional[Any] = None
    staged_discount: Optional[Any] = None
    touched_at: float = 0.0

    @property
    def step(self):
        return getattr(self.flow, "step", None)

    def clear_flow(self) -> None:
        self.flow = None


@dataclass
class _Entry:
    state: ConversationState
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConversationStore:
    """
    In-process map chat_id -> ConversationState. Nothing survives a restart; carts and orders
    live in the database, only the prompt position is lost.

    `lock(chat_id)` gives exclusive access per chat for callers that process updates concurrently.
    With `ttl_seconds` > 0 an entry idle for longer is dropped on its next access.
    """

    def __init__(self, ttl_seconds: float = 0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[int, _Entry] = {}

    def _expired(self, entry: _Entry) -> bool:
        return self.ttl_seconds > 0 and self.clock() - entry.state.touched_at > self.ttl_seconds

    def _entry(self, chat_id: int) -> _Entry:
        entry = self._entries.get(chat_id)
        if entry is not None and self._expired(entry):
            logger.info("conversation.expired", extra={"target_chat": chat_id, "step": str(entry.state.step)})
            # keep the lock object so a holder never races a fresh one
            entry.state = ConversationState()
        if entry is None:
            entry = _Entry(ConversationState())
            self._entries[chat_id] = entry
        entry.state.touched_at = self.clock()
        return entry

    def get(self, chat_id: int) -> ConversationState:
        return self._entry(chat_id).state

    def lock(self, chat_id: int) -> asyncio.Lock:
        return self._entry(chat_id).lock

    def peek(self, chat_id: int) -> Optional[ConversationState]:
        """Read without creating or touching; None when the chat has no live state."""
        entry = self._entries.get(chat_id)
        if entry is None or self._expired(entry):
            return None
        return entry.state

    def clear(self, chat_id: int) -> None:
        entry = self._entries.get(chat_id)
        if entry is None:
            return
        if entry.lock.locked():
            # someone is mid-update for this chat; reset in place instead of orphaning their lock
            entry.state = ConversationState(touched_at=self.clock())
        else:
            del self._entries[chat_id]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._entries
