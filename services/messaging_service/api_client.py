"""Async HTTP client for the chat API, used by ``ChatController``.

Every call returns a ``StoreResult``; transport and HTTP failures come back
as ``StoreError`` values instead of exceptions.
"""
from typing import List, Optional
import logging
import httpx
from pydantic import ValidationError
from errors import StoreError, StoreResult
from schemas import Conversation, Message, MessageAttachment, QuoteRequestData, QuoteRequestResult

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/chat"


class ChatApiClient:
    def __init__(self, base_url: str, token: str, use_mocks: Optional[bool] = None,
                 timeout: float = 10.0, transport: httpx.AsyncBaseTransport = None):
        headers = {"Authorization": f"Bearer {token}"}
        if use_mocks is not None:
            headers["X-Use-Mocks"] = "true" if use_mocks else "false"
        self._client = httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> StoreResult:
        try:
            response = await self._client.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            return StoreResult(None, StoreError(str(exc) or exc.__class__.__name__, code="network_error"))

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            logger.error("%s %s returned %s: %s", method, path, response.status_code, detail)
            return StoreResult(None, StoreError(str(detail), code=f"http_{response.status_code}"))
        return StoreResult(response.json())

    @staticmethod
    def _parse(result: StoreResult, parser) -> StoreResult:
        if result.error:
            return result
        try:
            return StoreResult(parser(result.data))
        except (ValidationError, KeyError, TypeError) as exc:
            logger.error("Unexpected response payload: %s", exc)
            return StoreResult(None, StoreError("Unexpected response payload", code="bad_payload", details=str(exc)))

    async def fetch_user_conversations(self) -> StoreResult:
        result = await self._request("GET", "/conversations")
        return self._parse(result, lambda rows: [Conversation.model_validate(r) for r in rows])

    async def fetch_conversation_messages(self, conversation_id: str) -> StoreResult:
        result = await self._request("GET", f"/{conversation_id}/messages")
        return self._parse(result, lambda rows: [Message.model_validate(r) for r in rows])

    async def send_message(self, conversation_id: str, content: str, message_type: str = "text",
                           attachments: List[MessageAttachment] = None) -> StoreResult:
        payload = {
            "content": content,
            "type": message_type,
            "attachments": [a.model_dump() for a in attachments or []],
        }
        result = await self._request("POST", f"/{conversation_id}/messages", json=payload)
        return self._parse(result, lambda body: body["id"])

    async def mark_messages_as_read(self, conversation_id: str) -> StoreResult:
        result = await self._request("POST", f"/{conversation_id}/read")
        return self._parse(result, lambda body: bool(body["success"]))

    async def start_conversation(self, participant_id: str, subject: str = "",
                                 job_id: str = None, tender_id: str = None) -> StoreResult:
        payload = {"participant_id": participant_id, "subject": subject, "job_id": job_id, "tender_id": tender_id}
        result = await self._request("POST", "/start", json=payload)
        return self._parse(result, lambda body: body["id"])

    async def start_company_conversation(self, company_id: str, company_name: str) -> StoreResult:
        result = await self._request("POST", f"/companies/{company_id}/start", json={"company_name": company_name})
        return self._parse(result, lambda body: body["id"])

    async def submit_quote_request(self, contractor_company_id: str, contractor_name: str,
                                   message: str, quote: QuoteRequestData) -> StoreResult:
        payload = {
            "contractor_company_id": contractor_company_id,
            "contractor_name": contractor_name,
            "message": message,
            "quote": quote.model_dump(),
        }
        result = await self._request("POST", "/quote-requests", json=payload)
        return self._parse(result, QuoteRequestResult.model_validate)
