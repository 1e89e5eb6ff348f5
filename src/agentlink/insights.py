"""Per-call insight state fed by the gateway.

Everything here is ephemeral: it belongs to the call currently connected
and is wiped by ``clear_call_data()`` before the next session opens.
Writes go through the ``update_*`` methods, which skip (and do not notify)
when the normalized value equals what is already stored.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from agentlink.events import (
    IntentEvent,
    PriorityEvent,
    SentimentEvent,
    TranscriptEvent,
)

logger = logging.getLogger(__name__)

SENTIMENT_HISTORY_LIMIT = 100

CLEARABLE_KINDS = (
    "sentiment",
    "priority",
    "intent",
    "actions",
    "knowledge",
    "transcript",
    "customer",
)

# Aliases accepted by clear()
KIND_ALIASES = {
    "knowledge_articles": "knowledge",
    "messages": "transcript",
}


@dataclass
class CallInsights:
    sentiment: SentimentEvent | None = None
    sentiment_history: list[int] = field(default_factory=list)
    priority: PriorityEvent | None = None
    queue_position: int | None = None
    intent: IntentEvent | None = None
    actions: list[dict] = field(default_factory=list)
    knowledge_articles: list[dict] = field(default_factory=list)
    transcript: list[TranscriptEvent] = field(default_factory=list)
    customer: dict | None = None

    last_update: float | None = None
    last_heartbeat_ack: float | None = None

    _listeners: list[Callable[[str, Any], None]] = field(default_factory=list, repr=False)

    @property
    def has_customer_context(self) -> bool:
        return bool(self.customer and self.customer.get("id"))

    def subscribe(self, callback: Callable[[str, Any], None]) -> None:
        """callback(kind, value) runs after every effective change."""
        self._listeners.append(callback)

    def _changed(self, kind: str, value: Any) -> bool:
        self.last_update = time.time()
        for callback in self._listeners:
            callback(kind, value)
        return True

    # ── Updates ──

    def update_sentiment(self, sentiment: SentimentEvent) -> bool:
        if sentiment == self.sentiment:
            return False
        self.sentiment = sentiment
        self.sentiment_history = (self.sentiment_history + [sentiment.score])[-SENTIMENT_HISTORY_LIMIT:]
        return self._changed("sentiment", sentiment)

    def update_priority(self, priority: PriorityEvent) -> bool:
        changed = False
        if priority != self.priority:
            self.priority = priority
            changed = self._changed("priority", priority)
        if priority.queue_position != self.queue_position:
            self.queue_position = priority.queue_position
            changed = self._changed("queue_position", priority.queue_position)
        return changed

    def update_intent(self, intent: IntentEvent) -> bool:
        if intent == self.intent:
            return False
        self.intent = intent
        return self._changed("intent", intent)

    def update_actions(self, actions: tuple | list) -> bool:
        """Replace the action list, keeping the completed flag the agent already set."""
        completed = {action["id"]: action.get("completed", False) for action in self.actions}
        merged = [{**action, "completed": completed.get(action["id"], False)} for action in actions]
        if merged == self.actions:
            return False
        self.actions = merged
        return self._changed("actions", merged)

    def set_action_completed(self, action_id: str, completed: bool = True) -> bool:
        for action in self.actions:
            if action["id"] == action_id:
                if action["completed"] == completed:
                    return False
                action["completed"] = completed
                return self._changed("actions", self.actions)
        return False

    def update_knowledge_articles(self, articles: tuple | list) -> bool:
        """Prepend unseen articles (flagged is_new); existing ones keep their position."""
        known = {article["id"] for article in self.knowledge_articles}
        fresh = []
        for article in articles:
            if article["id"] in known:
                continue
            known.add(article["id"])
            fresh.append({**article, "is_new": True, "received_at": time.time()})
        if not fresh:
            return False
        existing = [{**article, "is_new": False} for article in self.knowledge_articles]
        self.knowledge_articles = fresh + existing
        return self._changed("knowledge", self.knowledge_articles)

    def add_transcript_entry(self, entry: TranscriptEvent) -> bool:
        self.transcript.append(entry)
        return self._changed("transcript", entry)

    def update_customer(self, customer: dict) -> bool:
        if customer == self.customer:
            return False
        self.customer = customer
        return self._changed("customer", customer)

    def record_heartbeat_ack(self, received_at: float) -> None:
        self.last_heartbeat_ack = received_at

    # ── Clearing ──

    def clear(self, kind: str) -> bool:
        kind = KIND_ALIASES.get(kind, kind)
        if kind not in CLEARABLE_KINDS:
            logger.warning("Unknown insight kind %r, nothing cleared", kind)
            return False
        if kind == "sentiment":
            self.sentiment = None
            self.sentiment_history = []
        elif kind == "priority":
            self.priority = None
        elif kind == "intent":
            self.intent = None
        elif kind == "actions":
            self.actions = []
        elif kind == "knowledge":
            self.knowledge_articles = []
        elif kind == "transcript":
            self.transcript = []
        elif kind == "customer":
            self.customer = None
        self._changed(kind, None)
        return True

    def clear_call_data(self) -> None:
        """Wipe everything that belongs to the previous call."""
        for kind in CLEARABLE_KINDS:
            self.clear(kind)
        self.queue_position = None
        self.last_heartbeat_ack = None

    def snapshot(self) -> dict:
        return {
            "sentiment": asdict(self.sentiment) if self.sentiment else None,
            "sentimentHistory": list(self.sentiment_history),
            "priority": asdict(self.priority) if self.priority else None,
            "queuePosition": self.queue_position,
            "intent": asdict(self.intent) if self.intent else None,
            "actions": [dict(action) for action in self.actions],
            "knowledgeArticles": [dict(article) for article in self.knowledge_articles],
            "transcript": [asdict(entry) for entry in self.transcript],
            "customer": dict(self.customer) if self.customer else None,
            "hasCustomerContext": self.has_customer_context,
            "lastUpdate": self.last_update,
        }
