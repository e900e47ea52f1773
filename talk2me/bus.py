"""Event bus built on pypubsub for component status events.

Every topic carries a single ``event`` keyword holding one of the dataclasses
from :mod:`talk2me.models.events`. Each EventBus owns its own pypubsub
Publisher so independent engines (and tests) never share topic trees.
"""

import logging
from typing import Any, Callable, List

from pubsub.core import Publisher

logger = logging.getLogger(__name__)


WAKE_DETECTED = "wake.detected"
WAKE_STATUS = "wake.status"
TRANSPORT_STATUS = "transport.status"
TRANSPORT_MESSAGE = "transport.message"
RECORDING_STATUS = "recording.status"
CONVERSATION_MODE = "conversation.mode"
CONVERSATION_TRANSCRIPT = "conversation.transcript"

TOPICS = (
    WAKE_DETECTED,
    WAKE_STATUS,
    TRANSPORT_STATUS,
    TRANSPORT_MESSAGE,
    RECORDING_STATUS,
    CONVERSATION_MODE,
    CONVERSATION_TRANSCRIPT,
)


def _event_listener_proto(event):
    """Prototype listener that fixes the message data spec of every topic."""


class _LoggingExcHandler:
    """Log listener exceptions instead of letting them unwind the publisher."""

    def __call__(self, listenerID: str, topicObj) -> None:
        logger.error(f"Listener {listenerID} failed on topic '{topicObj.getName()}'",
                     exc_info=True)


class Subscription:
    """Handle returned by EventBus.subscribe.

    Holds a strong reference to the listener (pypubsub only keeps weak ones)
    until unsubscribe() is called. Unsubscribing twice is harmless.
    """

    def __init__(self, bus: 'EventBus', topic: str, listener: Callable[..., Any]):
        self.bus = bus
        self.topic = topic
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.bus._unsubscribe(self.listener, self.topic)
        self.listener = None


class EventBus:
    """Publishes status events between components."""

    def __init__(self):
        self.publisher = Publisher()
        self.publisher.setListenerExcHandler(_LoggingExcHandler())
        topic_mgr = self.publisher.getTopicMgr()
        for topic in TOPICS:
            topic_mgr.getOrCreateTopic(topic, _event_listener_proto)

    def subscribe(self, topic: str, listener: Callable[..., Any]) -> Subscription:
        """Subscribe listener(event=...) to a topic.

        Args:
            topic: One of the topic names defined in this module
            listener: Callable accepting a single ``event`` keyword

        Returns:
            Subscription handle used to unsubscribe
        """
        self.publisher.subscribe(listener, topic)
        logger.debug(f"Subscribed {getattr(listener, '__name__', listener)} to {topic}")
        return Subscription(self, topic, listener)

    def publish(self, topic: str, event: Any) -> None:
        """Deliver an event synchronously to every listener of the topic."""
        self.publisher.sendMessage(topic, event=event)

    def _unsubscribe(self, listener: Callable[..., Any], topic: str) -> None:
        try:
            self.publisher.unsubscribe(listener, topic)
        except Exception as e:
            logger.warning(f"Error during unsubscribe from {topic}: {e}")


def unsubscribe_all(subscriptions: List[Subscription]) -> None:
    """Unsubscribe every handle in the list and empty it."""
    for subscription in subscriptions:
        subscription.unsubscribe()
    subscriptions.clear()
