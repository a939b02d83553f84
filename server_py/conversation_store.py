"""
Bounded chat memory.

A conversation is keyed by (user_id, conversation_id) so two users sending
the same conversation id never see each other's turns. Only the most recent
`limit` messages are kept.
"""
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict

from studio_models import ConversationMessage

logger = logging.getLogger("ConversationStore")


class ConversationStore(ABC):
    def __init__(self, limit: int = 20):
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit

    @abstractmethod
    def get(self, user_id: str, conversation_id: str) -> list[dict]:
        """Messages oldest first, as {"role": ..., "content": ...}."""

    @abstractmethod
    def append(self, user_id: str, conversation_id: str, role: str, content: str) -> None: ...

    @abstractmethod
    def trim(self, user_id: str, conversation_id: str) -> int:
        """Drop everything but the newest `limit` messages; returns the kept count."""

    def extend(self, user_id: str, conversation_id: str, messages: list[dict]) -> int:
        for m in messages:
            self.append(user_id, conversation_id, m["role"], m["content"])
        return self.trim(user_id, conversation_id)


class InMemoryConversationStore(ConversationStore):
    """Process-local store; fine for a single worker or for tests."""

    def __init__(self, limit: int = 20):
        super().__init__(limit)
        self._lock = threading.Lock()
        self._conversations: dict[tuple[str, str], list[dict]] = defaultdict(list)

    def get(self, user_id, conversation_id):
        with self._lock:
            return [dict(m) for m in self._conversations.get((user_id, conversation_id), [])]

    def append(self, user_id, conversation_id, role, content):
        with self._lock:
            self._conversations[(user_id, conversation_id)].append({"role": role, "content": content})

    def trim(self, user_id, conversation_id):
        with self._lock:
            key = (user_id, conversation_id)
            history = self._conversations.get(key, [])
            if len(history) > self.limit:
                self._conversations[key] = history[-self.limit:]
            return len(self._conversations.get(key, []))


class DatabaseConversationStore(ConversationStore):
    """Stores turns in conversation_messages using the caller's session."""

    def __init__(self, db, limit: int = 20):
        super().__init__(limit)
        self.db = db

    def _query(self, user_id, conversation_id):
        return self.db.query(ConversationMessage).filter(
            ConversationMessage.user_id == user_id,
            ConversationMessage.conversation_id == conversation_id,
        )

    def get(self, user_id, conversation_id):
        rows = self._query(user_id, conversation_id).order_by(ConversationMessage.id.asc()).all()
        return [{"role": r.role, "content": r.content} for r in rows]

    def append(self, user_id, conversation_id, role, content):
        self.db.add(
            ConversationMessage(
                conversation_id=conversation_id,
                user_id=user_id,
                role=role,
                content=content,
            )
        )
        self.db.flush()

    def trim(self, user_id, conversation_id):
        ids = [
            r.id
            for r in self._query(user_id, conversation_id)
            .with_entities(ConversationMessage.id)
            .order_by(ConversationMessage.id.desc())
            .all()
        ]
        stale = ids[self.limit:]
        if stale:
            self.db.query(ConversationMessage).filter(ConversationMessage.id.in_(stale)).delete(
                synchronize_session=False
            )
            logger.info(
                "DB write conversation trim user_id=%s conversation_id=%s removed=%s",
                user_id,
                conversation_id,
                len(stale),
            )
        self.db.commit()
        return min(len(ids), self.limit)


_memory_store: InMemoryConversationStore | None = None


def get_conversation_store(db, backend: str = "db", limit: int = 20) -> ConversationStore:
    global _memory_store
    if backend == "memory":
        if _memory_store is None or _memory_store.limit != limit:
            _memory_store = InMemoryConversationStore(limit=limit)
        return _memory_store
    if backend != "db":
        logger.warning("Unknown CONVERSATION_STORE=%r, using db", backend)
    return DatabaseConversationStore(db, limit=limit)
