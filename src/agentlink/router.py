import json
import logging
import time
from typing import Callable

from agentlink.events import (
    ActionsEvent,
    CustomerEvent,
    HeartbeatAckEvent,
    InboundEvent,
    IntentEvent,
    KnowledgeEvent,
    PriorityEvent,
    SentimentEvent,
    TranscriptEvent,
    parse_event,
)
from agentlink.insights import CallInsights

logger = logging.getLogger(__name__)


class MessageRouter:
    """Decodes gateway frames and merges them into CallInsights.

    Frames that are not JSON objects are logged and dropped; there is no
    acknowledgement or redelivery, so a bad frame is simply lost.
    """

    def __init__(self, insights: CallInsights, clock: Callable[[], float] = time.time):
        self.insights = insights
        self.clock = clock
        self.frames_received = 0
        self.frames_dropped = 0
        self._handlers = {
            SentimentEvent: self._handle_sentiment,
            PriorityEvent: self._handle_priority,
            IntentEvent: self._handle_intent,
            ActionsEvent: self._handle_actions,
            KnowledgeEvent: self._handle_knowledge,
            TranscriptEvent: self._handle_transcript,
            CustomerEvent: self._handle_customer,
            HeartbeatAckEvent: self._handle_heartbeat_ack,
        }

    def handle_frame(self, frame: str | bytes) -> InboundEvent | None:
        """Entry point for ConnectionManager.on_message."""
        self.frames_received += 1
        try:
            data = json.loads(frame)
        except (TypeError, ValueError) as e:
            self.frames_dropped += 1
            logger.warning("Dropping unparseable frame: %s", e)
            return None
        if not isinstance(data, dict):
            self.frames_dropped += 1
            logger.warning("Dropping frame that is not a JSON object: %r", type(data).__name__)
            return None

        event = parse_event(data, now=self.clock())
        if event is None:
            return None
        self.dispatch(event)
        return event

    def dispatch(self, event: InboundEvent) -> bool:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("No handler for %s", type(event).__name__)
            return False
        return handler(event)

    # ── Handlers ──

    def _handle_sentiment(self, event: SentimentEvent) -> bool:
        return self.insights.update_sentiment(event)

    def _handle_priority(self, event: PriorityEvent) -> bool:
        return self.insights.update_priority(event)

    def _handle_intent(self, event: IntentEvent) -> bool:
        if event.detection_ms is not None:
            logger.debug("Intent %s detected in %dms", event.type, event.detection_ms)
        return self.insights.update_intent(event)

    def _handle_actions(self, event: ActionsEvent) -> bool:
        return self.insights.update_actions(event.actions)

    def _handle_knowledge(self, event: KnowledgeEvent) -> bool:
        return self.insights.update_knowledge_articles(event.articles)

    def _handle_transcript(self, event: TranscriptEvent) -> bool:
        return self.insights.add_transcript_entry(event)

    def _handle_customer(self, event: CustomerEvent) -> bool:
        logger.info("Customer context received: %s", event.id)
        return self.insights.update_customer(event.customer)

    def _handle_heartbeat_ack(self, event: HeartbeatAckEvent) -> bool:
        self.insights.record_heartbeat_ack(event.received_at)
        return False
