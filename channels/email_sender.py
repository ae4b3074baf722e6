"""
Email Sender — Report and alert delivery.

Provides:
- EmailDeliveryError: carries a retryable flag like the other channel errors
- ResendEmailSender: Resend HTTP API over httpx, base64 attachments
- LoggingEmailSender: logs and records messages (development, tests)
"""
from __future__ import annotations

import uuid
import structlog
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from models.schemas import EmailAttachment

logger = structlog.get_logger()

RESEND_SEND_URL = "https://api.resend.com/emails"


class EmailDeliveryError(Exception):

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class EmailSender(ABC):

    @abstractmethod
    async def send(
        self,
        to: list[str],
        subject: str,
        html: Optional[str] = None,
        text: Optional[str] = None,
        attachments: list[EmailAttachment] = None,
    ) -> str:
        """Deliver one message; returns the provider message id."""
        ...

    async def close(self) -> None:
        pass


class ResendEmailSender(EmailSender):

    def __init__(self, api_key: str, from_address: str, timeout: float = 20.0):
        self.api_key = api_key
        self.from_address = from_address
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        return self._client

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(RESEND_SEND_URL, json=payload)

    async def send(self, to, subject, html=None, text=None, attachments=None) -> str:
        payload: dict[str, Any] = {"from": self.from_address, "to": to, "subject": subject}
        if html:
            payload["html"] = html
        if text:
            payload["text"] = text
        if attachments:
            payload["attachments"] = [
                {"filename": a.filename, "content": a.content,
                 **({"content_type": a.content_type} if a.content_type else {})}
                for a in attachments
            ]

        try:
            resp = await self._post(payload)
        except httpx.TransportError as e:
            raise EmailDeliveryError(f"Email transport error: {e}") from e

        if resp.status_code >= 400:
            logger.error("resend_api_error", status=resp.status_code, body=resp.text[:300])
            retryable = resp.status_code == 429 or resp.status_code >= 500
            raise EmailDeliveryError(f"Resend API error: {resp.status_code}", retryable=retryable)

        message_id = resp.json().get("id", "")
        logger.info("email_sent", to=to, subject=subject, message_id=message_id,
                    attachments=len(attachments or []))
        return message_id

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()


class LoggingEmailSender(EmailSender):
    """Logs instead of delivering; keeps every message in ``sent``."""

    def __init__(self):
        self.sent: list[dict[str, Any]] = []

    async def send(self, to, subject, html=None, text=None, attachments=None) -> str:
        message_id = uuid.uuid4().hex
        self.sent.append({
            "id": message_id, "to": list(to), "subject": subject,
            "html": html, "text": text, "attachments": list(attachments or []),
        })
        logger.info("email_logged", to=to, subject=subject, message_id=message_id)
        return message_id


def create_email_sender(email_config) -> EmailSender:
    if email_config.provider == "resend":
        return ResendEmailSender(email_config.api_key, email_config.from_address)
    return LoggingEmailSender()
