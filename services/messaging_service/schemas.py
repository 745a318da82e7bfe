from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime

AttachmentType = Literal["image", "document", "other"]
MessageType = Literal["text", "system", "application_update"]
UserType = Literal["manager", "contractor"]
UserMessageType = Literal["text", "image", "document"]


class MessageAttachment(BaseModel):
    id: str = ""
    name: str = ""
    url: str = ""
    type: AttachmentType = "other"
    size: int = 0


class ConversationParticipant(BaseModel):
    id: str
    name: str
    avatar: str = ""
    user_type: UserType
    company: Optional[str] = None
    phone: Optional[str] = None
    is_online: bool = False


class Message(BaseModel):
    id: str
    sender_id: str
    sender_name: str = ""
    sender_avatar: str = ""
    content: str
    timestamp: datetime
    read: bool = False
    attachments: List[MessageAttachment] = []
    type: MessageType = "text"
    metadata: Optional[dict] = None


class Conversation(BaseModel):
    id: str
    participants: List[ConversationParticipant]
    last_message: Optional[Message] = None
    unread_count: int = 0
    job_id: Optional[str] = None
    job_title: Optional[str] = None
    subject: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class BudgetRange(BaseModel):
    min: float
    max: float


class QuoteRequestData(BaseModel):
    project_type: str
    budget_range: BudgetRange
    timeline: str
    location: str
    job_reference: Optional[str] = None


class QuoteRequestCreate(BaseModel):
    contractor_company_id: str
    contractor_name: str
    message: str = Field(min_length=1)
    quote: QuoteRequestData


class QuoteRequestResult(BaseModel):
    success: bool
    error: Optional[str] = None
    note: Optional[str] = None
    conversation_id: Optional[str] = None


class MessageCreate(BaseModel):
    content: str = ""
    type: UserMessageType = "text"
    attachments: List[MessageAttachment] = []


class MessageCreated(BaseModel):
    id: str


class StartConversationRequest(BaseModel):
    participant_id: str
    subject: str = ""
    job_id: Optional[str] = None
    tender_id: Optional[str] = None


class StartConversationResponse(BaseModel):
    id: str
    created: bool


class StartCompanyConversationRequest(BaseModel):
    company_name: str


class MarkReadResponse(BaseModel):
    success: bool
