import json
import logging
import pika
from settings import RABBITMQ_URL, EVENTS_QUEUE

logger = logging.getLogger(__name__)


def publish_event(event_type: str, data: dict) -> bool:
    """Publish to the shared events queue. Best-effort: failures are logged, never raised."""
    try:
        params = pika.URLParameters(RABBITMQ_URL)
        connection = pika.BlockingConnection(params)
        try:
            channel = connection.channel()
            channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
            payload = json.dumps({"type": event_type, "data": data}, default=str)
            channel.basic_publish(
                exchange="",
                routing_key=EVENTS_QUEUE,
                body=payload,
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
        return True
    except Exception as exc:
        logger.warning("Failed to publish event %s: %s", event_type, exc)
        return False
