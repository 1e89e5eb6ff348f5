"""Inbound gateway events.

The gateway tags every frame with ``type``.  ``parse_event`` turns a decoded
frame into one of the event dataclasses below, applying the defaulting and
type coercion each kind needs, or returns None for kinds this client does
not consume.
"""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

logger = logging.getLogger(__name__)

DEFAULT_SENTIMENT_CONFIDENCE = 0.5
HIGH_ACCURACY_THRESHOLD = 0.85
MEDIUM_ACCURACY_THRESHOLD = 0.6
PRIORITY_LEVELS = ("LOW", "MEDIUM", "HIGH", "URGENT")

KNOWLEDGE_TYPES = frozenset({"knowledge", "knowledge_articles", "knowledge_update"})
HEARTBEAT_ACK_TYPES = frozenset({"heartbeat_ack", "pong"})


@dataclass(frozen=True)
class SentimentEvent:
    score: int
    label: str = "neutral"
    trend: str = "stable"
    change: float = 0


@dataclass(frozen=True)
class PriorityEvent:
    level: str = "MEDIUM"
    wait_time: float = 0
    estimated_resolution: float = 0
    escalation: bool = False
    queue_position: int = 1


@dataclass(frozen=True)
class IntentEvent:
    type: str = "UNKNOWN"
    confidence: float = 0.0
    accuracy: str = "Low"
    detection_ms: int | None = None
    app_url: str | None = None
    app_title: str | None = None


@dataclass(frozen=True)
class ActionsEvent:
    actions: tuple = ()


@dataclass(frozen=True)
class KnowledgeEvent:
    articles: tuple = ()


@dataclass(frozen=True)
class TranscriptEvent:
    id: str
    timestamp: float
    speaker: str = "agent"
    text: str = ""


@dataclass(frozen=True)
class CustomerEvent:
    customer: dict = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.customer["id"]


@dataclass(frozen=True)
class HeartbeatAckEvent:
    received_at: float


InboundEvent = Union[
    SentimentEvent,
    PriorityEvent,
    IntentEvent,
    ActionsEvent,
    KnowledgeEvent,
    TranscriptEvent,
    CustomerEvent,
    HeartbeatAckEvent,
]


# ── Coercion helpers ──

def _present(data: dict, *keys: str) -> Any:
    """First value among ``keys`` that is present and not None."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _as_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    # json.loads accepts NaN and Infinity
    return result if math.isfinite(result) else default


def _as_int(value: Any, default: int) -> int:
    return int(_as_float(value, default))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _parse_timestamp(value: Any) -> float | None:
    """ISO-8601 string or epoch seconds/milliseconds -> epoch seconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = _as_float(value, math.nan)
        if math.isnan(seconds):
            return None
        return seconds / 1000 if seconds > 1e12 else seconds
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def accuracy_bucket(confidence: float) -> str:
    if confidence >= HIGH_ACCURACY_THRESHOLD:
        return "High"
    if confidence >= MEDIUM_ACCURACY_THRESHOLD:
        return "Medium"
    return "Low"


def placeholder_customer_id(name: str, now: float) -> str:
    """CUST-JANE-DOE-123456: name upper-cased and hyphenated, last 6 digits of now in ms."""
    slug = re.sub(r"\s+", "-", name.strip()).upper() or "UNKNOWN"
    return f"CUST-{slug}-{str(int(now * 1000))[-6:]}"


# ── Normalizers, one per event kind ──

def _sentiment(data: dict, now: float) -> SentimentEvent:
    confidence = _as_float(_present(data, "confidence", "score"), DEFAULT_SENTIMENT_CONFIDENCE)
    return SentimentEvent(
        score=round(confidence * 100),
        label=str(data.get("sentiment") or "neutral"),
        trend=str(data.get("trend") or "stable"),
        change=_as_float(data.get("change"), 0),
    )


def _priority(data: dict, now: float) -> PriorityEvent:
    level = str(_present(data, "level", "priority") or "MEDIUM").upper()
    return PriorityEvent(
        level=level if level in PRIORITY_LEVELS else "MEDIUM",
        wait_time=_as_float(data.get("waitTime"), 0),
        estimated_resolution=_as_float(data.get("estimatedResolution"), 0),
        escalation=_as_bool(data.get("escalation", False)),
        queue_position=_as_int(data.get("queuePosition"), 1),
    )


def _intent(data: dict, now: float) -> IntentEvent:
    confidence = _as_float(data.get("confidence"), 0.0)
    accuracy = _present(data, "intentAccuracy", "accuracy")
    sent_at = _parse_timestamp(_present(data, "timestamp", "deliveryTime"))
    detection_ms = None
    if sent_at is not None:
        elapsed = (now - sent_at) * 1000
        if math.isfinite(elapsed):
            detection_ms = max(0, int(elapsed))
    return IntentEvent(
        type=str(_present(data, "intent", "intentType") or "UNKNOWN"),
        confidence=confidence,
        accuracy=str(accuracy) if accuracy is not None else accuracy_bucket(confidence),
        detection_ms=detection_ms,
        app_url=data.get("appUrl"),
        app_title=data.get("appTitle"),
    )


def _actions(data: dict, now: float) -> ActionsEvent:
    raw = data.get("actions") or []
    actions = []
    for index, item in enumerate(raw if isinstance(raw, list) else []):
        if isinstance(item, str):
            item = {"action": item}
        if not isinstance(item, dict):
            continue
        actions.append({
            "id": str(item.get("id") or f"action-{index}"),
            "action": str(item.get("action") or item.get("text") or ""),
            "priority": str(item.get("priority") or "medium").lower(),
            "details": item.get("details"),
        })
    return ActionsEvent(actions=tuple(actions))


def _knowledge(data: dict, now: float) -> KnowledgeEvent:
    raw = _present(data, "articles", "knowledgeArticles") or []
    articles = []
    for index, item in enumerate(raw if isinstance(raw, list) else []):
        if not isinstance(item, dict):
            continue
        article = dict(item)
        article["id"] = str(item.get("id") or item.get("url") or item.get("title") or f"article-{index}")
        articles.append(article)
    return KnowledgeEvent(articles=tuple(articles))


def _transcript(data: dict, now: float) -> TranscriptEvent:
    return TranscriptEvent(
        id=str(int(now * 1000)),
        timestamp=_parse_timestamp(data.get("timestamp")) or now,
        speaker=str(data.get("speaker") or "agent"),
        text=str(data.get("text") or ""),
    )


def _customer(data: dict, now: float) -> CustomerEvent | None:
    raw = data.get("customer")
    if not isinstance(raw, dict):
        logger.warning("Dropping customer frame without a customer object")
        return None
    customer = dict(raw)
    if customer.get("accountType"):
        customer["tier"] = customer["accountType"]
    if not customer.get("id"):
        if customer.get("customerId"):
            customer["id"] = str(customer["customerId"])
        else:
            customer["id"] = placeholder_customer_id(str(customer.get("name") or "UNKNOWN"), now)
            logger.warning("Customer %r arrived without an id, using %s", customer.get("name"), customer["id"])
    return CustomerEvent(customer=customer)


def _heartbeat_ack(data: dict, now: float) -> HeartbeatAckEvent:
    return HeartbeatAckEvent(received_at=now)


NORMALIZERS = {
    "sentiment": _sentiment,
    "priority": _priority,
    "intent": _intent,
    "actions": _actions,
    "transcript": _transcript,
    "customer": _customer,
}
NORMALIZERS.update({kind: _knowledge for kind in KNOWLEDGE_TYPES})
NORMALIZERS.update({kind: _heartbeat_ack for kind in HEARTBEAT_ACK_TYPES})


def parse_event(data: dict, now: float | None = None) -> InboundEvent | None:
    """Normalize one decoded frame.  Unknown ``type`` values return None."""
    kind = data.get("type")
    normalizer = NORMALIZERS.get(kind) if isinstance(kind, str) else None
    if normalizer is None:
        logger.debug("Ignoring frame of unknown type %r", kind)
        return None
    return normalizer(data, time.time() if now is None else now)
