# link-analytics-service/messaging.py
"""
RabbitMQ plumbing: the click-counter job queue and the click broadcast.

Both publishers are fire-and-forget. They log failures and return instead of
raising, because they run after the redirect response has already been sent.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional, Tuple

import pika
from config import get_settings

logger = logging.getLogger(__name__)

INCREMENT_LINK_CLICKS = "increment_link_clicks"

CLICK_EVENT = "new-click"
GLOBAL_CHANNEL = "click-stream"
USER_CHANNEL_PREFIX = "user-clicks."
USER_CHANNEL_PATTERN = re.compile(r"^user-clicks\.(?P<user_id>[A-Za-z0-9]+)$")

Message = Tuple[str, str, dict]


def _connect(host: str) -> pika.BlockingConnection:
    # Blocking connection: publishing is quick and runs off the request path.
    return pika.BlockingConnection(pika.ConnectionParameters(host=host))


def publish_click_job(link_id: Any, user_id: Any) -> bool:
    """
    Queues the counter increment for a link on the durable click queue.
    Messages are persistent so a broker restart does not drop them.
    """
    settings = get_settings()
    message = {
        "job": INCREMENT_LINK_CLICKS,
        "link_id": str(link_id),
        "user_id": str(user_id),
    }
    connection = None
    try:
        connection = _connect(settings.rabbitmq_host)
        channel = connection.channel()
        channel.queue_declare(queue=settings.click_queue, durable=True)
        channel.basic_publish(
            exchange="",
            routing_key=settings.click_queue,
            body=json.dumps(message),
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=pika.DeliveryMode.Persistent,
            ),
        )
        logger.info("Queued click job", extra={"link_id": str(link_id)})
        return True
    except Exception as e:
        logger.error(
            "Failed to queue click job",
            extra={"link_id": str(link_id), "error": str(e)},
        )
        return False
    finally:
        if connection is not None and connection.is_open:
            connection.close()


def user_channel(user_id: Any) -> str:
    return f"{USER_CHANNEL_PREFIX}{user_id}"


def authorize_channel(user_id: Any, channel_name: str) -> bool:
    """
    A principal may only subscribe to the per-user channel carrying its own id.
    """
    if user_id is None or not channel_name:
        return False
    match = USER_CHANNEL_PATTERN.match(channel_name)
    if not match:
        return False
    return match.group("user_id") == str(user_id)


class Broadcaster(ABC):
    """Publishes (channel, event, payload) messages to subscribers. At-most-once."""

    @abstractmethod
    def publish_many(self, messages: Iterable[Message]) -> None:
        ...


class RabbitBroadcaster(Broadcaster):
    """
    Topic-exchange transport; the channel name is the routing key.
    Messages are transient: subscribers that are offline miss them.
    """

    def __init__(self, host: Optional[str] = None, exchange: Optional[str] = None):
        settings = get_settings()
        self.host = host or settings.rabbitmq_host
        self.exchange = exchange or settings.broadcast_exchange

    def publish_many(self, messages: Iterable[Message]) -> None:
        connection = _connect(self.host)
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=self.exchange, exchange_type="topic")
            for channel_name, event, payload in messages:
                channel.basic_publish(
                    exchange=self.exchange,
                    routing_key=channel_name,
                    body=json.dumps(
                        {"channel": channel_name, "event": event, "data": payload},
                        default=str,
                    ),
                    properties=pika.BasicProperties(content_type="application/json"),
                )
        finally:
            if connection.is_open:
                connection.close()


def get_broadcaster() -> Broadcaster:
    return RabbitBroadcaster()


def broadcast_click(
    user_id: Any,
    click: dict,
    record: dict,
    broadcaster: Optional[Broadcaster] = None,
) -> bool:
    """
    Sends the enriched click to its owner's channel and the raw hit record
    to the global click stream.
    """
    broadcaster = broadcaster or get_broadcaster()
    try:
        broadcaster.publish_many(
            [
                (user_channel(user_id), CLICK_EVENT, {"click": click}),
                (GLOBAL_CHANNEL, CLICK_EVENT, {"redirect": record}),
            ]
        )
        logger.info("Broadcast click", extra={"user_id": str(user_id), "redirect_id": click.get("id")})
        return True
    except Exception as e:
        logger.error(
            "Failed to broadcast click",
            extra={"user_id": str(user_id), "error": str(e)},
        )
        return False
