"""
Expiring key-value storage for conversation state and user activity.

Everything that outlives a single request goes through an injected
KeyValueStore. The in-memory implementation expires entries on a sliding
TTL, so abandoned conversations and idle users do not accumulate.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from strategy_models import ConversationMessage, Rule

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_MINUTES = 30


class KeyValueStore(ABC):
    """Minimal storage interface; values are opaque to the store."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemoryTTLStore(KeyValueStore):
    """
    In-memory store with:
    - sliding TTL (expires ttl_seconds after last read or write)
    - thread-safe operations
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        # key -> {"value": Any, "expires_at": float}
        self._items: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            if item["expires_at"] <= now:
                del self._items[key]
                return None
            item["expires_at"] = now + self.ttl_seconds
            return item["value"]

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._items[key] = {"value": value, "expires_at": self._clock() + self.ttl_seconds}

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def sweep_expired(self) -> int:
        """Delete expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, v in self._items.items() if v["expires_at"] <= now]
            for k in expired:
                del self._items[k]
        if expired:
            logger.debug("Swept %d expired entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


# ─── Conversation state ────────────────────────────────────────────


class ConversationState(BaseModel):
    conversation_id: str
    rules: List[Rule] = Field(default_factory=list)
    pattern: Optional[str] = None
    instrument: Optional[str] = None
    history: List[ConversationMessage] = Field(default_factory=list)


class ConversationStore:
    """Conversation state keyed by conversation id."""

    PREFIX = "conversation:"

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def load(self, conversation_id: str) -> Optional[ConversationState]:
        state = self.store.get(self.PREFIX + conversation_id)
        # stored copies keep callers from mutating shared state
        return state.model_copy(deep=True) if state is not None else None

    def save(self, state: ConversationState) -> None:
        self.store.set(self.PREFIX + state.conversation_id, state.model_copy(deep=True))

    def reset(self, conversation_id: str) -> None:
        self.store.delete(self.PREFIX + conversation_id)


# ─── User activity ─────────────────────────────────────────────────


class ActivityTracker:
    """
    Detects session boundaries from user inactivity. A user whose last
    activity is older than the inactivity window starts a new session.
    """

    PREFIX = "activity:"

    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    def record_activity(self, user_id: str, activity_type: str = "chat_message") -> bool:
        """Record activity; returns True when this activity starts a new session."""
        key = self.PREFIX + user_id
        now = self._clock()
        session = self.store.get(key)
        started = session is None
        if started:
            session = {"session_id": str(uuid.uuid4()), "started_at": now, "activity_count": 0}
            logger.info("New session for user %s", user_id)
        session = {**session, "last_activity": now, "last_activity_type": activity_type,
                   "activity_count": session["activity_count"] + 1}
        self.store.set(key, session)
        return started

    def current_session(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(self.PREFIX + user_id)

    def end_session(self, user_id: str) -> None:
        self.store.delete(self.PREFIX + user_id)
