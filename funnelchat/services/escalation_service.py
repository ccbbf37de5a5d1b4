"""Bounded escalation counter for unresolved user replies.

Every consecutive reply that matches no option raises the conversation's
escalation level by one, capped at MAX_ESCALATION_LEVEL. An accepted selection
resets it to zero. The level is ephemeral: the in-memory tracker loses it on
restart, the Redis tracker keeps it for escalation_ttl_seconds.
"""

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Optional

import redis

from funnelchat.config import settings
from funnelchat.logging_config import get_logger
from funnelchat.services.funnel_graph import FunnelBlock
from funnelchat.services.option_resolver import format_numbered_options

logger = get_logger("escalation_service")

MAX_ESCALATION_LEVEL = 3

MSG_CHOOSE_OPTION = "Please choose from the provided options above:"
MSG_OWNER_INFORMED = "I'll inform the experience owner about your request. Please wait for assistance."
MSG_CONTACT_OWNER = "I'm unable to help you further. Please contact the experience owner directly."


class EscalationTracker(ABC):
    @abstractmethod
    def current_level(self, conversation_id: str) -> int: ...

    @abstractmethod
    def bump_level(self, conversation_id: str) -> int:
        """Increment the level (capped) and return the new value."""

    @abstractmethod
    def reset(self, conversation_id: str) -> None: ...


class InMemoryEscalationTracker(EscalationTracker):
    """Process-local tracker.

    Each key gets its own lock, so keys never contend. A key's lock is
    reference-counted and dropped once no caller holds it.
    """

    def __init__(self):
        self._levels: dict[str, int] = {}
        self._locks: dict[str, list] = {}  # key -> [lock, holders]
        self._registry_lock = threading.Lock()

    @contextmanager
    def _lock_for(self, key: str):
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def current_level(self, conversation_id: str) -> int:
        key = str(conversation_id)
        with self._lock_for(key):
            return self._levels.get(key, 0)

    def bump_level(self, conversation_id: str) -> int:
        key = str(conversation_id)
        with self._lock_for(key):
            level = min(self._levels.get(key, 0) + 1, MAX_ESCALATION_LEVEL)
            self._levels[key] = level
            return level

    def reset(self, conversation_id: str) -> None:
        key = str(conversation_id)
        with self._lock_for(key):
            self._levels.pop(key, None)


class RedisEscalationTracker(EscalationTracker):
    """Shared tracker for multi-instance deployments. Redis outages degrade to level 0."""

    KEY_PREFIX = "funnelchat:escalation"

    def __init__(self, client: "redis.Redis", ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def _key(self, conversation_id: str) -> str:
        return f"{self.KEY_PREFIX}:{conversation_id}"

    def current_level(self, conversation_id: str) -> int:
        try:
            value = self.client.get(self._key(conversation_id))
        except redis.RedisError as e:
            logger.warning(f"Escalation level read failed: {e}")
            return 0
        if not value:
            return 0
        return min(int(value), MAX_ESCALATION_LEVEL)

    def bump_level(self, conversation_id: str) -> int:
        key = self._key(conversation_id)
        try:
            pipe = self.client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.ttl_seconds)
            level, _ = pipe.execute()
            # INCR keeps counting past the cap; write the cap back.
            if int(level) > MAX_ESCALATION_LEVEL:
                self.client.set(key, MAX_ESCALATION_LEVEL, ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Escalation level bump failed: {e}")
            return 0
        return min(int(level), MAX_ESCALATION_LEVEL)

    def reset(self, conversation_id: str) -> None:
        try:
            self.client.delete(self._key(conversation_id))
        except redis.RedisError as e:
            logger.warning(f"Escalation level reset failed: {e}")


def build_escalation_message(level: int, block: Optional[FunnelBlock]) -> str:
    """Bot reply for an unresolved input at the given (new) escalation level."""
    if level <= 1:
        options = format_numbered_options(block)
        if options:
            return f"{MSG_CHOOSE_OPTION}\n{options}"
        return MSG_CHOOSE_OPTION
    if level == 2:
        return MSG_OWNER_INFORMED
    return MSG_CONTACT_OWNER


_tracker: Optional[EscalationTracker] = None


def get_escalation_tracker() -> EscalationTracker:
    """Get or create the process-wide tracker selected by settings."""
    global _tracker
    if _tracker is None:
        if settings.escalation_backend == "redis":
            client = redis.Redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=settings.redis_socket_timeout_seconds,
                socket_connect_timeout=settings.redis_socket_timeout_seconds,
            )
            _tracker = RedisEscalationTracker(client, settings.escalation_ttl_seconds)
            logger.info("Using Redis escalation tracker")
        else:
            _tracker = InMemoryEscalationTracker()
    return _tracker
