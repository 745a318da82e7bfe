"""Client-side state for an open chat screen.

``ChatController`` drives conversation selection, per-conversation message
threads, optimistic sends and pending attachments on top of any API object
that exposes the ``ChatApiClient`` coroutines. Thread contents only change
through ``reduce_thread``; each entry carries its send state
(``Pending``/``Confirmed``) and a finished send reports ``Confirmed`` or
``Failed``.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union
import asyncio
import logging
import uuid

from errors import StoreError, StoreResult
from schemas import Conversation, Message, MessageAttachment

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Could not load your conversations."
THREAD_ERROR_MESSAGE = "Could not load messages."
SEND_ERROR_MESSAGE = "Could not send the message."
START_ERROR_MESSAGE = "Could not start the conversation."


class ViewStatus(str, Enum):
    NO_CONVERSATION = "no-conversation-selected"
    LOADING = "conversation-loading"
    READY = "conversation-ready"
    SENDING = "sending"


@dataclass(frozen=True)
class Pending:
    temp_id: str


@dataclass(frozen=True)
class Confirmed:
    message_id: str


@dataclass(frozen=True)
class Failed:
    error: StoreError


SendState = Union[Pending, Confirmed, Failed]


@dataclass(frozen=True)
class ThreadEntry:
    message: Message
    state: SendState


@dataclass(frozen=True)
class Append:
    message: Message
    state: SendState


@dataclass(frozen=True)
class Confirm:
    temp_id: str
    message_id: str
    attachments: Optional[List[MessageAttachment]] = None


@dataclass(frozen=True)
class Reject:
    temp_id: str
    error: StoreError


ThreadAction = Union[Append, Confirm, Reject]


def _is_pending(entry: ThreadEntry, temp_id: str) -> bool:
    return isinstance(entry.state, Pending) and entry.state.temp_id == temp_id


def reduce_thread(entries: Tuple[ThreadEntry, ...], action: ThreadAction) -> Tuple[ThreadEntry, ...]:
    if isinstance(action, Append):
        return entries + (ThreadEntry(action.message, action.state),)

    if isinstance(action, Confirm):
        confirmed = []
        for entry in entries:
            if _is_pending(entry, action.temp_id):
                update = {"id": action.message_id}
                if action.attachments is not None:
                    update["attachments"] = action.attachments
                entry = ThreadEntry(entry.message.model_copy(update=update), Confirmed(action.message_id))
            confirmed.append(entry)
        return tuple(confirmed)

    if isinstance(action, Reject):
        return tuple(entry for entry in entries if not _is_pending(entry, action.temp_id))

    raise TypeError(f"Unknown thread action: {action!r}")


class ObjectURLRegistry:
    """Temporary local URLs for files picked but not yet uploaded."""

    def __init__(self):
        self._objects: Dict[str, object] = {}

    def create(self, payload: object = None) -> str:
        url = f"blob:local/{uuid.uuid4()}"
        self._objects[url] = payload
        return url

    def revoke(self, url: str):
        self._objects.pop(url, None)

    def is_active(self, url: str) -> bool:
        return url in self._objects

    def resolve(self, url: str):
        return self._objects.get(url)

    @property
    def active_count(self) -> int:
        return len(self._objects)


@dataclass
class PendingAttachment:
    id: str
    name: str
    content_type: str
    size: int
    object_url: str

    @property
    def attachment_type(self) -> str:
        return "image" if self.content_type.startswith("image/") else "document"

    def preview(self) -> MessageAttachment:
        return MessageAttachment(
            id=self.id, name=self.name, url=self.object_url, type=self.attachment_type, size=self.size,
        )


@dataclass
class ChatUser:
    id: str
    name: str = ""
    avatar: str = ""


UploadFn = Callable[[PendingAttachment, object], Awaitable[StoreResult]]
NotifyFn = Callable[[str, str], None]


def _log_toast(level: str, message: str):
    logger.log(logging.ERROR if level == "error" else logging.INFO, "toast[%s]: %s", level, message)


class ChatController:
    def __init__(self, api, user: ChatUser, object_urls: ObjectURLRegistry = None,
                 notify: NotifyFn = None, upload_attachment: UploadFn = None,
                 scheduler: Callable[[Callable[[], None]], object] = None,
                 on_scroll: Callable[[], None] = None):
        self.api = api
        self.user = user
        self.object_urls = object_urls or ObjectURLRegistry()
        self.notify = notify or _log_toast
        self.upload_attachment = upload_attachment
        self._scheduler = scheduler
        self._on_scroll = on_scroll

        self.status = ViewStatus.NO_CONVERSATION
        self.conversations: List[Conversation] = []
        self.threads: Dict[str, Tuple[ThreadEntry, ...]] = {}
        self.selected_id: Optional[str] = None
        self.pending_attachments: List[PendingAttachment] = []
        self.is_loading_list = False
        self.load_error: Optional[str] = None
        self.scroll_count = 0

        self._deep_link_id: Optional[str] = None
        self._in_flight = 0
        self._background = set()

    # conversation list

    async def load_conversations(self, deep_link_id: str = None) -> bool:
        self._deep_link_id = deep_link_id
        self.is_loading_list = True
        self.load_error = None
        try:
            result = await self.api.fetch_user_conversations()
        finally:
            self.is_loading_list = False

        if result.error:
            logger.error("Error loading conversations: %s", result.error)
            self.load_error = LOAD_ERROR_MESSAGE
            self.notify("error", LOAD_ERROR_MESSAGE)
            return False

        self.conversations = list(result.data or [])
        if deep_link_id and self.get_conversation(deep_link_id) is not None:
            await self.select_conversation(deep_link_id)
        return True

    async def retry(self) -> bool:
        return await self.load_conversations(self._deep_link_id)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return next((c for c in self.conversations if c.id == conversation_id), None)

    def filter_conversations(self, query: str) -> List[Conversation]:
        needle = (query or "").strip().lower()
        if not needle:
            return list(self.conversations)
        return [
            c for c in self.conversations
            if any(needle in p.name.lower() or needle in (p.company or "").lower() for p in c.participants)
            or needle in (c.job_title or "").lower()
        ]

    async def start_company_conversation(self, company_id: str, company_name: str) -> Optional[str]:
        result = await self.api.start_company_conversation(company_id, company_name)
        if result.error:
            self.notify("error", result.error.message if result.error.code == "http_404" else START_ERROR_MESSAGE)
            return None
        return result.data

    # selection

    async def select_conversation(self, conversation_id: str) -> bool:
        if conversation_id != self.selected_id:
            self.clear_attachments()
        self.selected_id = conversation_id
        self._request_scroll()

        if conversation_id not in self.threads:
            self.status = ViewStatus.LOADING
            result = await self.api.fetch_conversation_messages(conversation_id)
            if self.selected_id != conversation_id:
                return False
            if result.error:
                logger.error("Error loading messages for %s: %s", conversation_id, result.error)
                self.notify("error", THREAD_ERROR_MESSAGE)
                self.selected_id = None
                self.status = ViewStatus.NO_CONVERSATION
                return False
            self.threads[conversation_id] = tuple(
                ThreadEntry(m, Confirmed(m.id)) for m in result.data or []
            )
            self._request_scroll()

        self.status = ViewStatus.SENDING if self._in_flight else ViewStatus.READY
        self._spawn(self._mark_read(conversation_id))
        return True

    async def _mark_read(self, conversation_id: str):
        result = await self.api.mark_messages_as_read(conversation_id)
        if result.error:
            logger.warning("Failed to mark messages as read in %s: %s", conversation_id, result.error)
            return
        self.conversations = [
            c.model_copy(update={"unread_count": 0}) if c.id == conversation_id else c
            for c in self.conversations
        ]

    def messages(self, conversation_id: str = None) -> List[Message]:
        conversation_id = conversation_id or self.selected_id
        return [entry.message for entry in self.threads.get(conversation_id, ())]

    # sending

    async def send_message(self, content: str) -> Optional[SendState]:
        conversation_id = self.selected_id
        text = (content or "").strip()
        if conversation_id is None or (not text and not self.pending_attachments):
            return None

        attachments, self.pending_attachments = self.pending_attachments, []
        temp_id = f"temp-{uuid.uuid4().hex}"
        optimistic = Message(
            id=temp_id,
            sender_id=self.user.id,
            sender_name=self.user.name,
            sender_avatar=self.user.avatar,
            content=text,
            timestamp=datetime.now(timezone.utc),
            read=False,
            attachments=[a.preview() for a in attachments],
            type="text",
        )
        self._dispatch(conversation_id, Append(optimistic, Pending(temp_id)))
        self._request_scroll()
        self.status = ViewStatus.SENDING
        self._in_flight += 1

        try:
            uploaded = await self._upload(attachments)
            if uploaded.error:
                result = uploaded
            else:
                result = await self.api.send_message(conversation_id, text, "text", uploaded.data)
        finally:
            for attachment in attachments:
                self.object_urls.revoke(attachment.object_url)
            self._in_flight -= 1
            if self._in_flight == 0 and self.status == ViewStatus.SENDING:
                self.status = ViewStatus.READY if self.selected_id else ViewStatus.NO_CONVERSATION
            elif self._in_flight == 0 and self.status != ViewStatus.NO_CONVERSATION and self.selected_id in self.threads:
                self.status = ViewStatus.READY

        if result.error:
            logger.error("Error sending message to %s: %s", conversation_id, result.error)
            self._dispatch(conversation_id, Reject(temp_id, result.error))
            self.notify("error", SEND_ERROR_MESSAGE)
            return Failed(result.error)

        self._dispatch(conversation_id, Confirm(temp_id, result.data, uploaded.data or None))
        self._touch_conversation(conversation_id)
        return Confirmed(result.data)

    async def _upload(self, attachments: List[PendingAttachment]) -> StoreResult:
        if not attachments:
            return StoreResult([])
        if self.upload_attachment is None:
            return StoreResult(None, StoreError("No attachment storage configured", code="no_storage"))
        uploaded = []
        for attachment in attachments:
            result = await self.upload_attachment(attachment, self.object_urls.resolve(attachment.object_url))
            if result.error:
                return result
            uploaded.append(result.data)
        return StoreResult(uploaded)

    def _dispatch(self, conversation_id: str, action: ThreadAction):
        self.threads[conversation_id] = reduce_thread(self.threads.get(conversation_id, ()), action)

    def _touch_conversation(self, conversation_id: str):
        thread = self.threads.get(conversation_id, ())
        last = next((e.message for e in reversed(thread) if isinstance(e.state, Confirmed)), None)
        self.conversations = [
            c.model_copy(update={"last_message": last, "updated_at": last.timestamp})
            if c.id == conversation_id and last is not None else c
            for c in self.conversations
        ]

    # attachments

    def add_attachment(self, name: str, content_type: str, size: int, payload: object = None) -> Optional[PendingAttachment]:
        if self.selected_id is None:
            return None
        attachment = PendingAttachment(
            id=f"att-{uuid.uuid4().hex}",
            name=name,
            content_type=content_type or "application/octet-stream",
            size=size,
            object_url=self.object_urls.create(payload),
        )
        self.pending_attachments.append(attachment)
        return attachment

    def remove_attachment(self, attachment_id: str):
        kept = []
        for attachment in self.pending_attachments:
            if attachment.id == attachment_id:
                self.object_urls.revoke(attachment.object_url)
            else:
                kept.append(attachment)
        self.pending_attachments = kept

    def clear_attachments(self):
        for attachment in self.pending_attachments:
            self.object_urls.revoke(attachment.object_url)
        self.pending_attachments = []

    def close(self):
        # in-flight requests keep running; only local object URLs are released
        self.clear_attachments()

    # scheduling

    def _request_scroll(self):
        if self._scheduler is not None:
            self._scheduler(self._scroll_to_bottom)
        else:
            asyncio.get_running_loop().call_soon(self._scroll_to_bottom)

    def _scroll_to_bottom(self):
        self.scroll_count += 1
        if self._on_scroll is not None:
            self._on_scroll()

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def wait_for_background(self):
        while self._background:
            await asyncio.gather(*list(self._background))
