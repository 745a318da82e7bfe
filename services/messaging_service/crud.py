from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import or_, and_, func, select, insert
from sqlalchemy.dialects import postgresql, sqlite
from pydantic import BaseModel
from models import (
    Conversation as ConversationRow,
    Message as MessageRow,
    MessageReadStatus,
    Notification,
    UserCompany,
    UserProfile,
    utcnow,
)
from schemas import (
    Conversation, ConversationParticipant, Message, MessageAttachment,
    QuoteRequestData, QuoteRequestResult,
)
from errors import StoreError, StoreResult
from events import publish_event
from typing import Iterable, List, Optional
import logging
import uuid

logger = logging.getLogger(__name__)

NO_ACCOUNT_NOTE = "This contractor has no active account in the system. Please contact them directly."
PREVIEW_LENGTH = 140

_ATTACHMENT_TYPES = {"image", "document", "other"}
_PASSTHROUGH_TYPES = {"system", "application_update"}


def _store_failure(context: str, exc: Exception, data=None) -> StoreResult:
    logger.error("%s: %s", context, exc, exc_info=True)
    return StoreResult(data, StoreError.from_exception(exc))


def _pair_filter(user_a: str, user_b: str):
    return or_(
        and_(ConversationRow.participant_1 == user_a, ConversationRow.participant_2 == user_b),
        and_(ConversationRow.participant_1 == user_b, ConversationRow.participant_2 == user_a),
    )


def _full_name(profile: Optional[UserProfile]) -> str:
    if profile is None:
        return ""
    return f"{profile.first_name or ''} {profile.last_name or ''}".strip()


def _serialize_attachments(attachments):
    if not attachments:
        return None
    if isinstance(attachments, BaseModel):
        return attachments.model_dump()
    if isinstance(attachments, dict):
        return attachments
    return [a.model_dump() if isinstance(a, BaseModel) else dict(a) for a in attachments]


def _to_attachment(raw: dict) -> MessageAttachment:
    attachment_type = raw.get("type") or "other"
    if attachment_type not in _ATTACHMENT_TYPES:
        attachment_type = "other"
    return MessageAttachment(
        id=str(raw.get("id") or ""),
        name=raw.get("name") or "",
        url=raw.get("url") or "",
        type=attachment_type,
        size=int(raw.get("size") or 0),
    )


def _to_message(row: MessageRow, read: bool = False) -> Message:
    attachments: List[MessageAttachment] = []
    metadata = None
    if isinstance(row.attachments, list):
        attachments = [_to_attachment(a) for a in row.attachments if isinstance(a, dict)]
    elif isinstance(row.attachments, dict):
        # quote requests keep their project details here
        metadata = row.attachments

    return Message(
        id=row.id,
        sender_id=row.sender_id,
        sender_name=_full_name(row.sender_profile),
        sender_avatar=(row.sender_profile.avatar_url if row.sender_profile else None) or "",
        content=row.content,
        timestamp=row.created_at,
        read=read,
        attachments=attachments,
        type=row.message_type if row.message_type in _PASSTHROUGH_TYPES else "text",
        metadata=metadata,
    )


def _to_participant(profile: Optional[UserProfile], fallback_id: str, company: Optional[str]) -> ConversationParticipant:
    return ConversationParticipant(
        id=profile.id if profile else fallback_id,
        name=_full_name(profile),
        avatar=(profile.avatar_url if profile else None) or "",
        user_type="manager" if profile is not None and profile.user_type == "manager" else "contractor",
        company=company,
        phone=(profile.phone if profile else None) or None,
        is_online=False,
    )


def _company_names(db: Session, user_ids: Iterable[str]) -> dict:
    rows = (
        db.query(UserCompany)
        .options(joinedload(UserCompany.company))
        .filter(UserCompany.user_id.in_(list(user_ids)), UserCompany.is_active.is_(True))
        .order_by(UserCompany.is_primary.desc())
        .all()
    )
    names = {}
    for link in rows:
        if link.company is not None:
            names.setdefault(link.user_id, link.company.name)
    return names


def _read_message_ids(db: Session, messages: List[MessageRow]) -> set:
    """Ids of messages someone other than their sender has read."""
    if not messages:
        return set()
    senders = {m.id: m.sender_id for m in messages}
    rows = db.query(MessageReadStatus.message_id, MessageReadStatus.user_id).filter(
        MessageReadStatus.message_id.in_(list(senders))
    ).all()
    return {message_id for message_id, user_id in rows if user_id != senders[message_id]}


def _insert_ignore_duplicates(db: Session, rows: List[dict]):
    read_status = MessageReadStatus.__table__
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(read_status).on_conflict_do_nothing(index_elements=["message_id", "user_id"])
    elif dialect == "sqlite":
        stmt = sqlite.insert(read_status).on_conflict_do_nothing(index_elements=["message_id", "user_id"])
    else:
        stmt = insert(read_status)
    db.execute(stmt, rows)


def create_conversation(db: Session, participant_1: str, participant_2: str, subject: str,
                        job_id: str = None, tender_id: str = None) -> StoreResult:
    if not participant_1 or not participant_2 or participant_1 == participant_2:
        error = StoreError("A conversation needs two distinct participants", code="invalid_participant")
        logger.error("Error creating conversation: %s", error.message)
        return StoreResult(None, error)
    try:
        known = db.query(func.count(UserProfile.id)).filter(
            UserProfile.id.in_([participant_1, participant_2])
        ).scalar()
        if known != 2:
            error = StoreError(
                "Unknown participant reference",
                code="invalid_participant",
                details=f"{participant_1}, {participant_2}",
            )
            logger.error("Error creating conversation: %s (%s)", error.message, error.details)
            return StoreResult(None, error)

        now = utcnow()
        conversation = ConversationRow(
            participant_1=participant_1,
            participant_2=participant_2,
            subject=subject,
            job_id=job_id or None,
            tender_id=tender_id or None,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(conversation)
        db.commit()
        db.refresh(conversation)
        return StoreResult(conversation.id)
    except SQLAlchemyError as exc:
        db.rollback()
        return _store_failure("Error creating conversation", exc)


def find_existing_conversation(db: Session, user_a: str, user_b: str) -> StoreResult:
    try:
        row = (
            db.query(ConversationRow.id)
            .filter(_pair_filter(user_a, user_b))
            .order_by(ConversationRow.last_message_at.desc())
            .first()
        )
        return StoreResult(row.id if row else None)
    except SQLAlchemyError as exc:
        return _store_failure("Error finding conversation", exc)


def find_conversation_by_job(db: Session, job_id: str, user_a: str, user_b: str, is_tender: bool = False) -> StoreResult:
    job_column = ConversationRow.tender_id if is_tender else ConversationRow.job_id
    try:
        row = (
            db.query(ConversationRow.id)
            .filter(job_column == job_id, _pair_filter(user_a, user_b))
            .order_by(ConversationRow.last_message_at.desc())
            .first()
        )
        return StoreResult(row.id if row else None)
    except SQLAlchemyError as exc:
        return _store_failure("Error finding conversation by job", exc)


def get_conversation_participants(db: Session, conversation_id: str) -> StoreResult:
    """Return ``(participant_1, participant_2)`` or ``None`` when the conversation does not exist."""
    try:
        row = db.query(ConversationRow.participant_1, ConversationRow.participant_2).filter(
            ConversationRow.id == conversation_id
        ).first()
        return StoreResult((row.participant_1, row.participant_2) if row else None)
    except SQLAlchemyError as exc:
        return _store_failure("Error loading conversation", exc)


def send_message(db: Session, conversation_id: str, sender_id: str, content: str,
                 message_type: str = "text", attachments=None) -> StoreResult:
    participants = get_conversation_participants(db, conversation_id)
    if participants.error:
        return participants
    if participants.data is None:
        return StoreResult(None, StoreError("Conversation not found", code="conversation_not_found"))
    if sender_id not in participants.data:
        error = StoreError("Sender is not a participant of this conversation", code="not_participant")
        logger.error("Error sending message to %s: %s", conversation_id, error.message)
        return StoreResult(None, error)

    now = utcnow()
    try:
        message = MessageRow(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            message_type=message_type,
            attachments=_serialize_attachments(attachments),
            created_at=now,
        )
        db.add(message)
        db.commit()
        db.refresh(message)
        message_id = message.id
    except SQLAlchemyError as exc:
        db.rollback()
        return _store_failure("Error sending message", exc)

    # Separate write: a failure here leaves last_message_at stale, the message stays.
    try:
        db.query(ConversationRow).filter(ConversationRow.id == conversation_id).update(
            {"last_message_at": now, "updated_at": now}
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Message %s stored but conversation %s was not bumped: %s", message_id, conversation_id, exc)

    return StoreResult(message_id)


def send_quote_request_message(db: Session, conversation_id: str, sender_id: str, content: str,
                               quote: QuoteRequestData) -> StoreResult:
    details = quote.model_dump()
    details["job_reference"] = quote.job_reference or None
    return send_message(db, conversation_id, sender_id, content, message_type="quote", attachments=details)


def fetch_user_conversations(db: Session, user_id: str) -> StoreResult:
    """Conversations the user takes part in, newest activity first.

    ``last_message`` and ``unread_count`` are left empty; see
    ``backfill_conversation_summaries``.
    """
    try:
        rows = (
            db.query(ConversationRow)
            .options(
                joinedload(ConversationRow.participant_1_profile),
                joinedload(ConversationRow.participant_2_profile),
                joinedload(ConversationRow.job),
                joinedload(ConversationRow.tender),
            )
            .filter(or_(ConversationRow.participant_1 == user_id, ConversationRow.participant_2 == user_id))
            .order_by(ConversationRow.last_message_at.desc())
            .all()
        )
        companies = _company_names(db, {r.participant_1 for r in rows} | {r.participant_2 for r in rows})
    except SQLAlchemyError as exc:
        return _store_failure("Error fetching conversations", exc)

    conversations = []
    for row in rows:
        if row.participant_1 == user_id:
            current, current_id = row.participant_1_profile, row.participant_1
            other, other_id = row.participant_2_profile, row.participant_2
        else:
            current, current_id = row.participant_2_profile, row.participant_2
            other, other_id = row.participant_1_profile, row.participant_1

        conversations.append(Conversation(
            id=row.id,
            participants=[
                _to_participant(current, current_id, companies.get(current_id)),
                _to_participant(other, other_id, companies.get(other_id)),
            ],
            last_message=None,
            unread_count=0,
            job_id=row.job_id or row.tender_id,
            job_title=(row.job.title if row.job else None) or (row.tender.title if row.tender else None),
            subject=row.subject,
            created_at=row.created_at,
            updated_at=row.updated_at,
        ))
    return StoreResult(conversations)


def fetch_conversation_messages(db: Session, conversation_id: str) -> StoreResult:
    try:
        rows = (
            db.query(MessageRow)
            .options(joinedload(MessageRow.sender_profile))
            .filter(MessageRow.conversation_id == conversation_id)
            .order_by(MessageRow.created_at.asc())
            .all()
        )
        read_ids = _read_message_ids(db, rows)
    except SQLAlchemyError as exc:
        return _store_failure("Error fetching messages", exc)
    return StoreResult([_to_message(row, row.id in read_ids) for row in rows])


def fetch_last_message(db: Session, conversation_id: str) -> StoreResult:
    try:
        row = (
            db.query(MessageRow)
            .options(joinedload(MessageRow.sender_profile))
            .filter(MessageRow.conversation_id == conversation_id)
            .order_by(MessageRow.created_at.desc())
            .first()
        )
        if row is None:
            return StoreResult(None)
        read_ids = _read_message_ids(db, [row])
    except SQLAlchemyError as exc:
        return _store_failure("Error fetching last message", exc)
    return StoreResult(_to_message(row, row.id in read_ids))


def count_unread_messages(db: Session, conversation_id: str, user_id: str) -> StoreResult:
    already_read = select(MessageReadStatus.message_id).where(MessageReadStatus.user_id == user_id)
    try:
        count = db.query(func.count(MessageRow.id)).filter(
            MessageRow.conversation_id == conversation_id,
            MessageRow.sender_id != user_id,
            MessageRow.id.notin_(already_read),
        ).scalar()
        return StoreResult(count or 0)
    except SQLAlchemyError as exc:
        return _store_failure("Error counting unread messages", exc, data=0)


def backfill_conversation_summaries(db: Session, conversations: List[Conversation], user_id: str) -> StoreResult:
    filled = []
    for conversation in conversations:
        last = fetch_last_message(db, conversation.id)
        if last.error:
            return StoreResult(None, last.error)
        unread = count_unread_messages(db, conversation.id, user_id)
        if unread.error:
            return StoreResult(None, unread.error)
        filled.append(conversation.model_copy(update={"last_message": last.data, "unread_count": unread.data}))
    return StoreResult(filled)


def mark_messages_as_read(db: Session, conversation_id: str, user_id: str) -> StoreResult:
    try:
        message_ids = [
            row.id for row in db.query(MessageRow.id).filter(
                MessageRow.conversation_id == conversation_id,
                MessageRow.sender_id != user_id,
            )
        ]
    except SQLAlchemyError as exc:
        return _store_failure("Error fetching messages for read status", exc, data=False)

    if not message_ids:
        return StoreResult(True)

    try:
        seen = {
            row.message_id for row in db.query(MessageReadStatus.message_id).filter(
                MessageReadStatus.user_id == user_id,
                MessageReadStatus.message_id.in_(message_ids),
            )
        }
        now = utcnow()
        rows = [
            {"id": str(uuid.uuid4()), "message_id": message_id, "user_id": user_id, "read_at": now}
            for message_id in message_ids if message_id not in seen
        ]
        if rows:
            _insert_ignore_duplicates(db, rows)
            db.commit()
        return StoreResult(True)
    except SQLAlchemyError as exc:
        db.rollback()
        return _store_failure("Error marking messages as read", exc, data=False)


def create_notification(db: Session, user_id: str, type: str, title: str, message: str,
                        data: dict = None, action_url: str = None, priority: str = "normal") -> StoreResult:
    try:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or None,
            action_url=action_url or None,
            priority=priority,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError as exc:
        db.rollback()
        return _store_failure("Error creating notification", exc)

    publish_event("notification.created", {
        "notification_id": notification.id,
        "user_id": user_id,
        "type": type,
        "title": title,
        "body": message,
        "action_url": action_url,
        "priority": priority,
    })
    return StoreResult(notification.id)


def notify_message_recipient(db: Session, conversation_id: str, sender_id: str, message_id: str, content: str) -> StoreResult:
    """Create a ``new_message`` notification for the other participant."""
    participants = get_conversation_participants(db, conversation_id)
    if participants.error or participants.data is None:
        return participants
    participant_1, participant_2 = participants.data
    recipient_id = participant_2 if participant_1 == sender_id else participant_1

    try:
        sender = db.query(UserProfile).filter(UserProfile.id == sender_id).first()
    except SQLAlchemyError as exc:
        return _store_failure("Error loading sender profile", exc)
    sender_name = _full_name(sender) or "Someone"

    return create_notification(
        db,
        user_id=recipient_id,
        type="new_message",
        title="New message",
        message=f"{sender_name}: {(content or '')[:PREVIEW_LENGTH]}",
        data={"conversation_id": conversation_id, "message_id": message_id, "sender_id": sender_id},
        action_url=f"/messages?conversation={conversation_id}",
    )


def get_company_user_id(db: Session, company_id: str) -> StoreResult:
    """Resolve a manager or contractor company to the user account that speaks for it."""
    try:
        link = (
            db.query(UserCompany)
            .filter(UserCompany.company_id == company_id, UserCompany.is_active.is_(True))
            .order_by(UserCompany.is_primary.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        return _store_failure("Error querying user_companies", exc)

    if link is None:
        logger.warning("No active users found for company %s", company_id)
        return StoreResult(None)
    return StoreResult(link.user_id)


get_contractor_user_id = get_company_user_id
get_manager_user_id = get_company_user_id


def _find_or_create_conversation(db: Session, user_a: str, user_b: str, subject: str, job_id: str = None) -> StoreResult:
    existing = find_existing_conversation(db, user_a, user_b)
    if existing.error:
        logger.warning("Lookup of existing conversation failed, creating a new one: %s", existing.error)
    elif existing.data:
        return existing
    return create_conversation(db, user_a, user_b, subject, job_id=job_id)


def start_company_conversation(db: Session, requester_id: str, company_id: str, company_name: str) -> StoreResult:
    company_user = get_company_user_id(db, company_id)
    if company_user.error or company_user.data is None:
        return company_user
    return _find_or_create_conversation(
        db, requester_id, company_user.data, f"Collaboration inquiry - {company_name}"
    )


def submit_quote_request(db: Session, requester_id: str, contractor_company_id: str, contractor_name: str,
                         content: str, quote: QuoteRequestData) -> QuoteRequestResult:
    contractor_user = get_contractor_user_id(db, contractor_company_id)
    if contractor_user.error:
        return QuoteRequestResult(success=False, error=f"Could not find the user profile for {contractor_name}")
    if contractor_user.data is None:
        logger.warning("Contractor %s has no user account, quote request not delivered", contractor_company_id)
        return QuoteRequestResult(success=True, note=NO_ACCOUNT_NOTE)
    contractor_user_id = contractor_user.data

    conversation = _find_or_create_conversation(
        db, requester_id, contractor_user_id,
        f"Quote request - {quote.project_type}",
        job_id=quote.job_reference,
    )
    if conversation.error or not conversation.data:
        return QuoteRequestResult(
            success=False,
            error=conversation.error.message if conversation.error else "Could not create conversation",
        )
    conversation_id = conversation.data

    message = send_quote_request_message(db, conversation_id, requester_id, content, quote)
    if message.error or not message.data:
        return QuoteRequestResult(
            success=False,
            error=message.error.message if message.error else "Could not send quote request",
            conversation_id=conversation_id,
        )

    notification = create_notification(
        db,
        user_id=contractor_user_id,
        type="new_message",
        title="New quote request",
        message=f"You received a new quote request for: {quote.project_type}",
        data={
            "conversation_id": conversation_id,
            "message_id": message.data,
            "project_type": quote.project_type,
            "budget_range": quote.budget_range.model_dump(),
            "timeline": quote.timeline,
            "location": quote.location,
        },
        action_url=f"/messages?conversation={conversation_id}",
    )
    if notification.error:
        logger.warning("Failed to create quote request notification: %s", notification.error)

    return QuoteRequestResult(success=True, conversation_id=conversation_id)
