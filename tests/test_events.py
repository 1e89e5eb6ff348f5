import json

from agentlink.events import (
    ActionsEvent,
    CustomerEvent,
    HeartbeatAckEvent,
    IntentEvent,
    KnowledgeEvent,
    PriorityEvent,
    SentimentEvent,
    TranscriptEvent,
    accuracy_bucket,
    parse_event,
    placeholder_customer_id,
)

NOW = 1_700_000_000.0


class TestSentiment:
    def test_defaults_when_fields_missing(self):
        event = parse_event({"type": "sentiment"}, now=NOW)
        assert event == SentimentEvent(score=50, label="neutral", trend="stable", change=0)

    def test_confidence_scaled_to_percent(self):
        event = parse_event({"type": "sentiment", "sentiment": "positive", "confidence": 0.87}, now=NOW)
        assert event.score == 87
        assert event.label == "positive"

    def test_zero_confidence_is_kept(self):
        event = parse_event({"type": "sentiment", "confidence": 0}, now=NOW)
        assert event.score == 0

    def test_null_confidence_uses_default(self):
        event = parse_event({"type": "sentiment", "confidence": None}, now=NOW)
        assert event.score == 50

    def test_non_finite_confidence_uses_default(self):
        for value in (float("nan"), float("inf"), float("-inf")):
            event = parse_event({"type": "sentiment", "confidence": value, "change": value}, now=NOW)
            assert event.score == 50
            assert event.change == 0


class TestPriority:
    def test_defaults(self):
        event = parse_event({"type": "priority"}, now=NOW)
        assert event == PriorityEvent(level="MEDIUM", wait_time=0, estimated_resolution=0, escalation=False, queue_position=1)

    def test_level_upper_cased(self):
        event = parse_event({"type": "priority", "level": "urgent", "waitTime": "45", "escalation": "true"}, now=NOW)
        assert event.level == "URGENT"
        assert event.wait_time == 45.0
        assert event.escalation is True

    def test_unknown_level_falls_back(self):
        event = parse_event({"type": "priority", "level": "critical"}, now=NOW)
        assert event.level == "MEDIUM"

    def test_non_finite_numbers_use_defaults(self):
        data = json.loads('{"type": "priority", "queuePosition": Infinity, "waitTime": NaN}')
        event = parse_event(data, now=NOW)
        assert event.queue_position == 1
        assert event.wait_time == 0

    def test_oversized_integer_uses_default(self):
        event = parse_event({"type": "priority", "queuePosition": 10 ** 400}, now=NOW)
        assert event.queue_position == 1


class TestIntent:
    def test_accuracy_buckets(self):
        assert accuracy_bucket(0.9) == "High"
        assert accuracy_bucket(0.85) == "High"
        assert accuracy_bucket(0.6) == "Medium"
        assert accuracy_bucket(0.59) == "Low"

    def test_accuracy_derived_from_confidence(self):
        event = parse_event({"type": "intent", "intent": "BILLING", "confidence": 0.7}, now=NOW)
        assert isinstance(event, IntentEvent)
        assert event.type == "BILLING"
        assert event.accuracy == "Medium"
        assert event.detection_ms is None

    def test_explicit_accuracy_wins(self):
        event = parse_event({"type": "intent", "confidence": 0.1, "intentAccuracy": "High"}, now=NOW)
        assert event.accuracy == "High"

    def test_detection_latency_from_timestamp(self):
        event = parse_event({"type": "intent", "timestamp": (NOW - 0.25) * 1000}, now=NOW)
        assert event.detection_ms == 250

    def test_unusable_timestamp_leaves_latency_unset(self):
        for value in (float("inf"), float("nan"), 10 ** 400):
            event = parse_event({"type": "intent", "deliveryTime": value}, now=NOW)
            assert event.detection_ms is None

    def test_far_future_timestamp_clamps_latency(self):
        event = parse_event({"type": "intent", "deliveryTime": 1e308}, now=NOW)
        assert event.detection_ms == 0

    def test_unknown_intent_defaults(self):
        event = parse_event({"type": "intent"}, now=NOW)
        assert event.type == "UNKNOWN"
        assert event.confidence == 0.0
        assert event.accuracy == "Low"


class TestActionsAndKnowledge:
    def test_actions_get_ids_and_lowercase_priority(self):
        event = parse_event({
            "type": "actions",
            "actions": ["Verify identity", {"id": "a-2", "action": "Refund", "priority": "HIGH"}, 42],
        }, now=NOW)
        assert isinstance(event, ActionsEvent)
        assert [a["id"] for a in event.actions] == ["action-0", "a-2"]
        assert event.actions[0]["priority"] == "medium"
        assert event.actions[1]["priority"] == "high"

    def test_knowledge_aliases(self):
        for kind in ("knowledge", "knowledge_articles", "knowledge_update"):
            event = parse_event({"type": kind, "articles": [{"id": "kb-1", "title": "Reset"}]}, now=NOW)
            assert isinstance(event, KnowledgeEvent)
            assert event.articles[0]["id"] == "kb-1"

    def test_knowledge_articles_key(self):
        event = parse_event({"type": "knowledge", "knowledgeArticles": [{"title": "Refunds"}]}, now=NOW)
        assert event.articles[0]["id"] == "Refunds"


class TestTranscript:
    def test_defaults_speaker_and_timestamp(self):
        event = parse_event({"type": "transcript", "text": "Hello"}, now=NOW)
        assert isinstance(event, TranscriptEvent)
        assert event.speaker == "agent"
        assert event.text == "Hello"
        assert event.timestamp == NOW

    def test_iso_timestamp(self):
        event = parse_event({"type": "transcript", "speaker": "customer", "timestamp": "2023-11-14T22:13:20Z"}, now=NOW)
        assert event.speaker == "customer"
        assert event.timestamp == 1_700_000_000.0


class TestCustomer:
    def test_placeholder_id_from_name(self):
        event = parse_event({"type": "customer", "customer": {"name": "Jane Doe"}}, now=NOW)
        assert isinstance(event, CustomerEvent)
        assert event.id
        assert "JANE-DOE" in event.id
        assert event.id.startswith("CUST-")

    def test_customer_id_fallback(self):
        event = parse_event({"type": "customer", "customer": {"name": "Jane", "customerId": 991}}, now=NOW)
        assert event.id == "991"

    def test_explicit_id_kept(self):
        event = parse_event({"type": "customer", "customer": {"id": "C-1", "customerId": "C-2"}}, now=NOW)
        assert event.id == "C-1"

    def test_account_type_copied_to_tier(self):
        event = parse_event({"type": "customer", "customer": {"id": "C-1", "accountType": "Gold"}}, now=NOW)
        assert event.customer["tier"] == "Gold"

    def test_missing_customer_object_dropped(self):
        assert parse_event({"type": "customer", "customer": "Jane"}, now=NOW) is None

    def test_placeholder_uses_last_six_ms_digits(self):
        assert placeholder_customer_id("  mary  ann smith ", 1_700_000_123.5) == "CUST-MARY-ANN-SMITH-123500"


class TestUnknown:
    def test_unknown_type_returns_none(self):
        assert parse_event({"type": "weather"}, now=NOW) is None

    def test_missing_type_returns_none(self):
        assert parse_event({"text": "hi"}, now=NOW) is None

    def test_unhashable_type_returns_none(self):
        assert parse_event({"type": ["sentiment"]}, now=NOW) is None

    def test_heartbeat_ack_and_pong(self):
        assert parse_event({"type": "heartbeat_ack"}, now=NOW) == HeartbeatAckEvent(received_at=NOW)
        assert parse_event({"type": "pong"}, now=NOW) == HeartbeatAckEvent(received_at=NOW)
