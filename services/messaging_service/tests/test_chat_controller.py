import asyncio
from datetime import datetime
import pytest
from chat_controller import (
    ChatController, ChatUser, ObjectURLRegistry, ViewStatus,
    Pending, Confirmed, Failed, ThreadEntry, Append, Confirm, Reject, reduce_thread,
)
from errors import StoreError, StoreResult
from schemas import Conversation, ConversationParticipant, Message, MessageAttachment


def make_conversation(conversation_id, other_name="Jan Nowak", job_title=None, unread=0):
    return Conversation(
        id=conversation_id,
        participants=[
            ConversationParticipant(id="manager-anna", name="Anna Kowalska", user_type="manager"),
            ConversationParticipant(id=f"{conversation_id}-other", name=other_name, user_type="contractor",
                                    company="CleanPro Ltd."),
        ],
        unread_count=unread,
        job_title=job_title,
        created_at=datetime(2024, 1, 15, 10, 0),
        updated_at=datetime(2024, 1, 15, 10, 0),
    )


def make_message(message_id, content, sender_id="contractor-jan"):
    return Message(id=message_id, sender_id=sender_id, content=content, timestamp=datetime(2024, 1, 15, 10, 0))


class FakeApi:
    def __init__(self):
        self.conversations = [make_conversation("conv-1", unread=2), make_conversation("conv-2", "Piotr Wisniewski",
                                                                                      job_title="Roof repair")]
        self.threads = {"conv-1": [make_message("m1", "Hello")], "conv-2": []}
        self.fail_list = False
        self.fail_send = False
        self.calls = []
        self.sent = []
        self.send_gate = None

    async def fetch_user_conversations(self):
        self.calls.append(("list",))
        if self.fail_list:
            return StoreResult(None, StoreError("network down", code="network_error"))
        return StoreResult(list(self.conversations))

    async def fetch_conversation_messages(self, conversation_id):
        self.calls.append(("messages", conversation_id))
        return StoreResult(list(self.threads.get(conversation_id, [])))

    async def mark_messages_as_read(self, conversation_id):
        self.calls.append(("read", conversation_id))
        return StoreResult(True)

    async def send_message(self, conversation_id, content, message_type="text", attachments=None):
        self.calls.append(("send", conversation_id))
        if self.send_gate is not None:
            await self.send_gate.wait()
        if self.fail_send:
            return StoreResult(None, StoreError("insert failed", code="http_502"))
        self.sent.append((conversation_id, content, attachments))
        return StoreResult(f"server-{len(self.sent)}")

    async def start_company_conversation(self, company_id, company_name):
        if company_id == "company-empty":
            return StoreResult(None, StoreError("This company has no active account in the system.", code="http_404"))
        return StoreResult("conv-new")


class Harness:
    def __init__(self, **kwargs):
        self.api = FakeApi()
        self.toasts = []
        self.deferred = []
        self.urls = ObjectURLRegistry()
        self.controller = ChatController(
            self.api,
            ChatUser(id="manager-anna", name="Anna Kowalska"),
            object_urls=self.urls,
            notify=lambda level, message: self.toasts.append((level, message)),
            scheduler=self.deferred.append,
            **kwargs,
        )


def run(coro):
    return asyncio.run(coro)


def test_reduce_thread_confirm_replaces_in_place():
    entries = (ThreadEntry(make_message("m1", "a"), Confirmed("m1")),)
    entries = reduce_thread(entries, Append(make_message("temp-1", "b"), Pending("temp-1")))
    entries = reduce_thread(entries, Append(make_message("temp-2", "c"), Pending("temp-2")))

    entries = reduce_thread(entries, Confirm("temp-1", "m2"))

    assert [e.message.id for e in entries] == ["m1", "m2", "temp-2"]
    assert entries[1].state == Confirmed("m2")
    assert entries[2].state == Pending("temp-2")


def test_reduce_thread_reject_removes_only_that_entry():
    entries = reduce_thread((), Append(make_message("temp-1", "b"), Pending("temp-1")))
    entries = reduce_thread(entries, Append(make_message("temp-2", "c"), Pending("temp-2")))

    entries = reduce_thread(entries, Reject("temp-1", StoreError("boom")))

    assert [e.message.id for e in entries] == ["temp-2"]


def test_load_conversations_with_deep_link():
    h = Harness()

    async def scenario():
        assert await h.controller.load_conversations(deep_link_id="conv-2") is True
        await h.controller.wait_for_background()

    run(scenario())

    assert h.controller.selected_id == "conv-2"
    assert h.controller.status == ViewStatus.READY
    assert ("read", "conv-2") in h.api.calls


def test_load_failure_sets_error_state_and_retry_recovers():
    h = Harness()
    h.api.fail_list = True

    assert run(h.controller.load_conversations()) is False
    assert h.controller.load_error
    assert h.toasts[-1][0] == "error"

    h.api.fail_list = False
    assert run(h.controller.retry()) is True
    assert h.controller.load_error is None
    assert len(h.controller.conversations) == 2


def test_select_fetches_once_then_uses_cache():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        assert h.controller.status == ViewStatus.NO_CONVERSATION
        await h.controller.select_conversation("conv-1")
        await h.controller.select_conversation("conv-2")
        await h.controller.select_conversation("conv-1")
        await h.controller.wait_for_background()

    run(scenario())

    fetches = [c for c in h.api.calls if c[0] == "messages"]
    assert fetches == [("messages", "conv-1"), ("messages", "conv-2")]
    assert h.controller.status == ViewStatus.READY
    assert [m.content for m in h.controller.messages()] == ["Hello"]
    assert h.controller.get_conversation("conv-1").unread_count == 0


def test_scroll_is_deferred():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")

    run(scenario())

    assert h.controller.scroll_count == 0
    for callback in h.deferred:
        callback()
    assert h.controller.scroll_count == len(h.deferred) > 0


def test_optimistic_send_success_replaces_temp_entry():
    h = Harness()
    h.api.send_gate = None
    observed = {}

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-2")
        h.api.send_gate = asyncio.Event()
        task = asyncio.ensure_future(h.controller.send_message("X"))
        await asyncio.sleep(0)
        observed["status"] = h.controller.status
        observed["messages"] = h.controller.messages()
        h.api.send_gate.set()
        return await task

    outcome = run(scenario())

    assert observed["status"] == ViewStatus.SENDING
    assert [m.content for m in observed["messages"]] == ["X"]
    assert observed["messages"][0].id.startswith("temp-")
    assert observed["messages"][0].read is False

    assert outcome == Confirmed("server-1")
    messages = [m for m in h.controller.messages() if m.content == "X"]
    assert len(messages) == 1
    assert messages[0].id == "server-1"
    assert h.controller.status == ViewStatus.READY
    assert h.controller.get_conversation("conv-2").last_message.id == "server-1"


def test_switching_to_uncached_conversation_during_send_ends_ready():
    h = Harness()
    observed = {}

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        h.api.send_gate = asyncio.Event()
        task = asyncio.ensure_future(h.controller.send_message("X"))
        await asyncio.sleep(0)
        await h.controller.select_conversation("conv-2")
        observed["status"] = h.controller.status
        h.api.send_gate.set()
        return await task

    outcome = run(scenario())

    assert observed["status"] == ViewStatus.SENDING
    assert outcome == Confirmed("server-1")
    assert h.controller.selected_id == "conv-2"
    assert h.controller.status == ViewStatus.READY
    assert [m.id for m in h.controller.messages("conv-1")] == ["m1", "server-1"]


def test_optimistic_send_failure_rolls_back():
    h = Harness()
    h.api.fail_send = True

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        return await h.controller.send_message("X")

    outcome = run(scenario())

    assert isinstance(outcome, Failed)
    assert [m for m in h.controller.messages() if m.content == "X"] == []
    assert [m.content for m in h.controller.messages()] == ["Hello"]
    assert h.toasts[-1][0] == "error"
    assert h.controller.status == ViewStatus.READY


def test_blank_message_is_ignored():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        return await h.controller.send_message("   ")

    assert run(scenario()) is None
    assert not [c for c in h.api.calls if c[0] == "send"]


def test_switching_conversation_revokes_pending_attachments():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        attachment = h.controller.add_attachment("plan.pdf", "application/pdf", 1024, payload=b"%PDF")
        assert h.urls.is_active(attachment.object_url)
        await h.controller.select_conversation("conv-2")
        return attachment

    attachment = run(scenario())

    assert not h.urls.is_active(attachment.object_url)
    assert h.controller.pending_attachments == []
    assert h.urls.active_count == 0


def test_send_with_attachment_uploads_and_revokes():
    uploads = []

    async def upload(attachment, payload):
        uploads.append(payload)
        return StoreResult(MessageAttachment(id=attachment.id, name=attachment.name,
                                             url=f"https://cdn.example.com/{attachment.name}",
                                             type=attachment.attachment_type, size=attachment.size))

    h = Harness(upload_attachment=upload)

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        attachment = h.controller.add_attachment("photo.jpg", "image/jpeg", 2048, payload=b"jpeg")
        outcome = await h.controller.send_message("")
        return attachment, outcome

    attachment, outcome = run(scenario())

    assert isinstance(outcome, Confirmed)
    assert uploads == [b"jpeg"]
    assert not h.urls.is_active(attachment.object_url)
    sent_attachments = h.api.sent[0][2]
    assert sent_attachments[0].url == "https://cdn.example.com/photo.jpg"
    assert h.controller.messages()[-1].attachments[0].type == "image"


def test_send_with_attachment_without_storage_fails():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")
        attachment = h.controller.add_attachment("plan.pdf", "application/pdf", 10)
        return attachment, await h.controller.send_message("see attached")

    attachment, outcome = run(scenario())

    assert isinstance(outcome, Failed)
    assert not h.urls.is_active(attachment.object_url)
    assert not [c for c in h.api.calls if c[0] == "send"]


def test_remove_attachment_and_close():
    h = Harness()

    async def scenario():
        await h.controller.load_conversations()
        await h.controller.select_conversation("conv-1")

    run(scenario())
    first = h.controller.add_attachment("a.pdf", "application/pdf", 1)
    second = h.controller.add_attachment("b.png", "image/png", 1)

    h.controller.remove_attachment(first.id)
    assert [a.id for a in h.controller.pending_attachments] == [second.id]
    assert not h.urls.is_active(first.object_url)

    h.controller.close()
    assert h.urls.active_count == 0


def test_attachment_requires_selected_conversation():
    h = Harness()

    assert h.controller.add_attachment("a.pdf", "application/pdf", 1) is None


def test_filter_conversations():
    h = Harness()
    run(h.controller.load_conversations())

    assert [c.id for c in h.controller.filter_conversations("piotr")] == ["conv-2"]
    assert [c.id for c in h.controller.filter_conversations("roof")] == ["conv-2"]
    assert [c.id for c in h.controller.filter_conversations("cleanpro")] == ["conv-1", "conv-2"]
    assert len(h.controller.filter_conversations("")) == 2


def test_start_company_conversation_reports_missing_account():
    h = Harness()

    assert run(h.controller.start_company_conversation("company-empty", "Ghost")) is None
    assert "no active account" in h.toasts[-1][1]
    assert run(h.controller.start_company_conversation("company-sunny", "Sunny")) == "conv-new"
