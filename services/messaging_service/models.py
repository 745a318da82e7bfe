from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def _new_id():
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=_new_id)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    user_type = Column(String, nullable=False, default="contractor")  # 'manager' | 'contractor'
    phone = Column(String, nullable=True)


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    type = Column(String, nullable=True)  # 'manager' | 'contractor'


class UserCompany(Base):
    __tablename__ = "user_companies"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("user_profiles.id"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    is_primary = Column(Boolean, default=False)

    company = relationship("Company")


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String, nullable=False)


class Tender(Base):
    __tablename__ = "tenders"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String, nullable=False)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_new_id)
    participant_1 = Column(String(36), ForeignKey("user_profiles.id"), nullable=False, index=True)
    participant_2 = Column(String(36), ForeignKey("user_profiles.id"), nullable=False, index=True)
    subject = Column(String, nullable=True)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=True, index=True)
    tender_id = Column(String(36), ForeignKey("tenders.id"), nullable=True, index=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    participant_1_profile = relationship("UserProfile", foreign_keys=[participant_1])
    participant_2_profile = relationship("UserProfile", foreign_keys=[participant_2])
    job = relationship("Job")
    tender = relationship("Tender")
    messages = relationship("Message", back_populates="conversation")


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("user_profiles.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    # 'text' | 'image' | 'document' | 'system' | 'quote' | 'application_update'
    message_type = Column(String, nullable=False, default="text")
    attachments = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    conversation = relationship("Conversation", back_populates="messages")
    sender_profile = relationship("UserProfile")


class MessageReadStatus(Base):
    __tablename__ = "message_read_status"
    __table_args__ = (UniqueConstraint("message_id", "user_id", name="uq_message_read_status_message_user"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    message_id = Column(String(36), ForeignKey("messages.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("user_profiles.id"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), default=utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, index=True)
    type = Column(String, nullable=False)  # 'new_message', 'bid_received', 'application_status_update', etc.
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)
    action_url = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="normal")
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
