import pika
import json
import logging
from database import SessionLocal
from crud import find_conversation_by_job, create_conversation, send_message
from settings import RABBITMQ_URL, EVENTS_QUEUE

logger = logging.getLogger(__name__)

STATUS_LABELS = {
    "accepted": "accepted",
    "rejected": "not selected",
    "shortlisted": "shortlisted",
    "under_review": "under review",
    "awarded": "awarded",
}


def handle_application_status_changed(db, data: dict) -> bool:
    """Post an application_update message into the job conversation. Returns False when skipped."""
    job_id = data.get("job_id")
    manager_id = data.get("manager_id")
    contractor_id = data.get("contractor_id")
    application_status = data.get("status")
    is_tender = bool(data.get("is_tender"))

    if not all([job_id, manager_id, contractor_id, application_status]):
        logger.warning("Missing required fields for application.status_changed: %s", data)
        return False

    job_title = data.get("job_title") or ("tender" if is_tender else "job")
    conversation = find_conversation_by_job(db, job_id, manager_id, contractor_id, is_tender=is_tender)
    if conversation.error:
        raise conversation.error

    conversation_id = conversation.data
    if not conversation_id:
        created = create_conversation(
            db,
            participant_1=manager_id,
            participant_2=contractor_id,
            subject=job_title,
            job_id=None if is_tender else job_id,
            tender_id=job_id if is_tender else None,
        )
        if created.error:
            raise created.error
        conversation_id = created.data

    label = STATUS_LABELS.get(application_status, application_status.replace("_", " "))
    sent = send_message(
        db,
        conversation_id,
        manager_id,
        f"Your application for '{job_title}' is now {label}.",
        message_type="application_update",
    )
    if sent.error:
        raise sent.error
    logger.info("Posted application update %s to conversation %s", sent.data, conversation_id)
    return True


def process_messaging_event(ch, method, properties, body):
    """Process events that should surface inside conversations"""
    try:
        event_data = json.loads(body)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse event JSON: %s", exc)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return

    event_type = event_data.get("type")
    data = event_data.get("data", {})
    logger.debug("Messaging worker received event: %s", event_type)

    if event_type != "application.status_changed":
        ch.basic_ack(delivery_tag=method.delivery_tag)
        return

    db = SessionLocal()
    try:
        handle_application_status_changed(db, data)
        ch.basic_ack(delivery_tag=method.delivery_tag)
    except Exception as exc:
        logger.exception("Error processing %s: %s", event_type, exc)
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
    finally:
        db.close()


def start_worker():
    """Start the messaging worker to listen for events"""
    params = pika.URLParameters(RABBITMQ_URL)
    connection = pika.BlockingConnection(params)
    channel = connection.channel()
    channel.queue_declare(queue=EVENTS_QUEUE, durable=True)
    channel.basic_consume(queue=EVENTS_QUEUE, on_message_callback=process_messaging_event)
    logger.info("Messaging worker started. Waiting for events...")
    channel.start_consuming()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    start_worker()
