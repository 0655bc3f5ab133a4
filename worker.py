# link-analytics-service/worker.py
"""
Consumes the click queue and runs the click-counter jobs.

    python worker.py

Messages are acknowledged only after the job has run. A failing job is
requeued once; a second failure (or a malformed message) is dropped and logged.
"""
import asyncio
import json
import logging

import pika
import redis
from bson.errors import InvalidId
from cache import get_redis_client_instance
from config import get_settings
from database import close_mongo_connection, connect_to_mongo
from jobs import UnknownJobError, handle_click_job
from logging_config import initialize_logging

logger = logging.getLogger(__name__)


def make_message_handler(loop: asyncio.AbstractEventLoop, redis_client: redis.Redis):
    def on_message(channel, method, properties, body):
        try:
            payload = json.loads(body)
            loop.run_until_complete(handle_click_job(payload, redis_client))
        except (ValueError, KeyError, TypeError, InvalidId, UnknownJobError) as e:
            logger.error(
                "Dropping malformed click job",
                extra={"body": body.decode("utf-8", "replace") if isinstance(body, bytes) else str(body), "error": str(e)},
            )
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
            return
        except Exception as e:
            requeue = not method.redelivered
            logger.error(
                "Click job failed",
                extra={"error": str(e), "requeue": requeue},
            )
            channel.basic_nack(delivery_tag=method.delivery_tag, requeue=requeue)
            return

        channel.basic_ack(delivery_tag=method.delivery_tag)

    return on_message


def main() -> None:
    initialize_logging()
    settings = get_settings()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    mongo_client, _ = loop.run_until_complete(connect_to_mongo())
    redis_client = get_redis_client_instance()

    connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.rabbitmq_host))
    channel = connection.channel()
    channel.queue_declare(queue=settings.click_queue, durable=True)
    channel.basic_qos(prefetch_count=1)
    channel.basic_consume(
        queue=settings.click_queue,
        on_message_callback=make_message_handler(loop, redis_client),
    )

    logger.info("Waiting for click jobs", extra={"queue": settings.click_queue})
    try:
        channel.start_consuming()
    except KeyboardInterrupt:
        channel.stop_consuming()
    finally:
        if connection.is_open:
            connection.close()
        redis_client.close()
        loop.run_until_complete(close_mongo_connection(mongo_client))
        loop.close()


if __name__ == "__main__":
    main()
