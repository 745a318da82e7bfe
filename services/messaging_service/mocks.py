"""Fixture conversations served when the mock data source is active."""
from datetime import datetime
from typing import List
from schemas import Conversation, ConversationParticipant, Message, MessageAttachment

_ANNA = ConversationParticipant(
    id="user-1", name="Anna Kowalska", user_type="manager",
    company="Sunny Residences HOA", phone="+48 123 456 789",
)
_JAN = ConversationParticipant(
    id="user-2", name="Jan Nowak", user_type="contractor",
    company="CleanPro Ltd.", phone="+48 987 654 321",
)
_PIOTR = ConversationParticipant(
    id="user-3", name="Piotr Wisniewski", user_type="contractor",
    company="Elektro-Serwis", phone="+48 555 123 456",
)

_MESSAGES = {
    "conv-1": [
        Message(id="msg-1", sender_id="user-1", sender_name=_ANNA.name,
                content="Hello, we are looking for a stairwell cleaning crew for three buildings.",
                timestamp=datetime(2024, 1, 15, 10, 0), read=True),
        Message(id="msg-2", sender_id="user-2", sender_name=_JAN.name,
                content="Good morning! How many floors per building?",
                timestamp=datetime(2024, 1, 15, 10, 30), read=True),
        Message(id="msg-3", sender_id="user-1", sender_name=_ANNA.name,
                content="Four floors each, cleaning twice a week.",
                timestamp=datetime(2024, 1, 15, 11, 0), read=True),
        Message(id="msg-4", sender_id="user-1", sender_name=_ANNA.name,
                content="The floor plans are attached.",
                timestamp=datetime(2024, 1, 16, 9, 15), read=True,
                attachments=[MessageAttachment(id="att-1", name="floor-plans.pdf",
                                               url="/files/floor-plans.pdf", type="document", size=245760)]),
        Message(id="msg-5", sender_id="user-2", sender_name=_JAN.name,
                content="Thank you for the details. May I send a detailed quote?",
                timestamp=datetime(2024, 1, 16, 14, 30), read=False),
    ],
    "conv-2": [
        Message(id="msg-6", sender_id="user-3", sender_name=_PIOTR.name,
                content="Your application for the electrical inspection has been shortlisted.",
                timestamp=datetime(2024, 1, 14, 8, 0), read=True, type="application_update"),
        Message(id="msg-7", sender_id="user-1", sender_name=_ANNA.name,
                content="Great, when can you start?",
                timestamp=datetime(2024, 1, 14, 9, 45), read=True),
    ],
}

_CONVERSATIONS = [
    Conversation(
        id="conv-1", participants=[_ANNA, _JAN], last_message=_MESSAGES["conv-1"][-1], unread_count=1,
        job_id="1", job_title="Stairwell cleaning", subject="Stairwell cleaning",
        created_at=datetime(2024, 1, 15, 10, 0), updated_at=datetime(2024, 1, 16, 14, 30),
    ),
    Conversation(
        id="conv-2", participants=[_ANNA, _PIOTR], last_message=_MESSAGES["conv-2"][-1], unread_count=0,
        job_id="2", job_title="Electrical installation inspection", subject="Electrical inspection",
        created_at=datetime(2024, 1, 14, 8, 0), updated_at=datetime(2024, 1, 14, 9, 45),
    ),
]


def get_mock_conversations() -> List[Conversation]:
    return [c.model_copy(deep=True) for c in _CONVERSATIONS]


def get_mock_messages(conversation_id: str) -> List[Message]:
    return [m.model_copy(deep=True) for m in _MESSAGES.get(conversation_id, [])]
