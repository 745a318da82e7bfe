from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from database import get_db
from schemas import (
    Conversation, Message, MessageCreate, MessageCreated, StartConversationRequest,
    StartConversationResponse, StartCompanyConversationRequest, MarkReadResponse,
    QuoteRequestCreate, QuoteRequestResult,
)
from crud import (
    create_conversation, find_existing_conversation, start_company_conversation,
    send_message, fetch_user_conversations, backfill_conversation_summaries,
    fetch_conversation_messages, mark_messages_as_read, get_conversation_participants,
    notify_message_recipient, submit_quote_request,
)
from errors import StoreError
from mocks import get_mock_conversations, get_mock_messages
from settings import AUTH_SERVICE_URL, USE_MOCKS, DataSourceConfig, resolve_data_source
from typing import List
import httpx
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])
http_bearer = HTTPBearer(auto_error=False)

_ERROR_STATUS = {
    "conversation_not_found": status.HTTP_404_NOT_FOUND,
    "not_participant": status.HTTP_403_FORBIDDEN,
    "invalid_participant": status.HTTP_400_BAD_REQUEST,
}


def resolve_account(credentials: HTTPAuthorizationCredentials = Depends(http_bearer)):
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    try:
        response = httpx.get(
            f"{AUTH_SERVICE_URL}/api/v1/auth/me",
            headers={"Authorization": f"Bearer {credentials.credentials}"},
            timeout=5.0
        )
    except httpx.HTTPError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Cannot verify authentication: {exc}"
        ) from exc
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )
    account = response.json()
    if not account.get("id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication payload"
        )
    account["id"] = str(account["id"])
    return account


def get_data_source(request: Request) -> DataSourceConfig:
    override = request.headers.get("X-Use-Mocks") or request.cookies.get("use_mocks")
    return resolve_data_source(override, USE_MOCKS)


def raise_for_store_error(error: StoreError):
    raise HTTPException(
        status_code=_ERROR_STATUS.get(error.code, status.HTTP_502_BAD_GATEWAY),
        detail=error.message,
    )


def require_participant(db: Session, conversation_id: str, user_id: str):
    result = get_conversation_participants(db, conversation_id)
    if result.error:
        raise_for_store_error(result.error)
    if result.data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    if user_id not in result.data:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a participant of this conversation"
        )


@router.post("/start", response_model=StartConversationResponse)
def start_conversation(
    request: StartConversationRequest,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    user_id = account["id"]
    if request.participant_id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot start a conversation with yourself")

    existing = find_existing_conversation(db, user_id, request.participant_id)
    if existing.error:
        raise_for_store_error(existing.error)
    if existing.data:
        return StartConversationResponse(id=existing.data, created=False)

    created = create_conversation(
        db, user_id, request.participant_id, request.subject,
        job_id=request.job_id, tender_id=request.tender_id,
    )
    if created.error:
        raise_for_store_error(created.error)
    return StartConversationResponse(id=created.data, created=True)


@router.post("/companies/{company_id}/start", response_model=StartConversationResponse)
def start_conversation_with_company(
    company_id: str,
    request: StartCompanyConversationRequest,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    result = start_company_conversation(db, account["id"], company_id, request.company_name)
    if result.error:
        raise_for_store_error(result.error)
    if result.data is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="This company has no active account in the system. Please contact them directly."
        )
    return StartConversationResponse(id=result.data, created=False)


@router.get("/conversations", response_model=List[Conversation])
def get_conversations(
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    data_source: DataSourceConfig = Depends(get_data_source)
):
    if data_source.use_mock_data:
        return get_mock_conversations()

    user_id = account["id"]
    conversations = fetch_user_conversations(db, user_id)
    if conversations.error:
        raise_for_store_error(conversations.error)
    summaries = backfill_conversation_summaries(db, conversations.data, user_id)
    if summaries.error:
        raise_for_store_error(summaries.error)
    return summaries.data


@router.get("/{conversation_id}/messages", response_model=List[Message])
def get_conversation_messages(
    conversation_id: str,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    data_source: DataSourceConfig = Depends(get_data_source)
):
    if data_source.use_mock_data:
        return get_mock_messages(conversation_id)

    require_participant(db, conversation_id, account["id"])
    messages = fetch_conversation_messages(db, conversation_id)
    if messages.error:
        raise_for_store_error(messages.error)
    return messages.data


@router.post("/{conversation_id}/messages", response_model=MessageCreated, status_code=status.HTTP_201_CREATED)
def post_message(
    conversation_id: str,
    request: MessageCreate,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    if not request.content.strip() and not request.attachments:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message is empty")

    user_id = account["id"]
    sent = send_message(db, conversation_id, user_id, request.content, request.type, request.attachments)
    if sent.error:
        raise_for_store_error(sent.error)

    notified = notify_message_recipient(db, conversation_id, user_id, sent.data, request.content)
    if notified.error:
        logger.warning("Failed to notify recipient of message %s: %s", sent.data, notified.error)
    return MessageCreated(id=sent.data)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
def mark_read(
    conversation_id: str,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    user_id = account["id"]
    require_participant(db, conversation_id, user_id)
    result = mark_messages_as_read(db, conversation_id, user_id)
    if result.error:
        raise_for_store_error(result.error)
    return MarkReadResponse(success=bool(result.data))


@router.post("/quote-requests", response_model=QuoteRequestResult)
def create_quote_request(
    request: QuoteRequestCreate,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return submit_quote_request(
        db,
        account["id"],
        request.contractor_company_id,
        request.contractor_name,
        request.message,
        request.quote,
    )
