# app/services/events.py
# Realtime event port: publish(topic, payload)
#
# Topics:
#   user:<user_id>        personal feed (request accepted, session booked, ...)
#   chat:<chat_id>        new messages and proposal changes
#   session:<session_id>  status changes of a booked session
#
# Publishing is fire-and-forget. It always happens AFTER the database commit,
# and a failed publish is logged and never rolls back business state.
#
# Transports (settings.event_transport):
#   redis  Redis Pub/Sub on "<event_channel_prefix>:<topic>"
#   log    write each event to the "lernhub.events" logger (dev, tests)

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import redis as redis_lib

from app.core.config import settings

logger = logging.getLogger("lernhub.events")


# ── Topic helpers ─────────────────────────────────────────────────────────────

def user_topic(user_id) -> str:
    return f"user:{user_id}"


def chat_topic(chat_id) -> str:
    return f"chat:{chat_id}"


def session_topic(session_id) -> str:
    return f"session:{session_id}"


def serialize_event(payload: Dict[str, Any]) -> str:
    """Deterministic JSON so every subscriber sees identical bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


# ── Publishers ────────────────────────────────────────────────────────────────

class EventPublisher(ABC):
    """Delivery-only port. The database stays the source of truth."""

    @abstractmethod
    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        pass


class RedisEventPublisher(EventPublisher):
    def __init__(self, redis_url: str, channel_prefix: str = "lernhub"):
        self.redis_url = redis_url
        self.channel_prefix = channel_prefix
        self._client: Optional[redis_lib.Redis] = None

    def _connect(self) -> redis_lib.Redis:
        if self._client is None:
            self._client = redis_lib.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                retry_on_timeout=True,
            )
        return self._client

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        channel = f"{self.channel_prefix}:{topic}"
        self._connect().publish(channel, serialize_event(payload))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class LoggingEventPublisher(EventPublisher):
    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        logger.info("event %s %s", topic, serialize_event(payload))


class InMemoryEventPublisher(EventPublisher):
    """Keeps every event in order. Used by tests and local scripts."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, topic: str, payload: Dict[str, Any]) -> None:
        self.events.append((topic, payload))

    def for_topic(self, topic: str) -> List[Dict[str, Any]]:
        return [p for t, p in self.events if t == topic]

    def event_names(self, topic: Optional[str] = None) -> List[str]:
        return [p.get("event") for t, p in self.events if topic is None or t == topic]

    def clear(self) -> None:
        self.events.clear()


_publisher: Optional[EventPublisher] = None


def build_event_publisher() -> EventPublisher:
    if settings.event_transport == "redis":
        return RedisEventPublisher(settings.redis_url, settings.event_channel_prefix)
    return LoggingEventPublisher()


def get_event_publisher() -> EventPublisher:
    """
    FastAPI dependency returning the process-wide publisher.
    Tests override it with an InMemoryEventPublisher.
    """
    global _publisher
    if _publisher is None:
        _publisher = build_event_publisher()
    return _publisher


def emit(
    publisher: Optional[EventPublisher],
    topics,
    event: str,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Publish one event to one or more topics.
    Call only after the triggering transaction committed.
    """
    if publisher is None:
        return
    if isinstance(topics, str):
        topics = [topics]

    body = {
        "event": event,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        **(payload or {}),
    }
    for topic in topics:
        try:
            publisher.publish(topic, body)
        except Exception as e:
            logger.warning("Publish of %s to %s failed: %s", event, topic, e)
