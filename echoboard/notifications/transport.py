"""Outbound mail transports.

Provides an ABC for mail delivery plus a Resend HTTP API implementation
and a recording mock used by tests and ``echoboard worker --mock-mail``.
Transports raise MailDeliveryError on any failure so the executor turns
it into a nack and the queue decides whether to retry.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from echoboard.errors import MailDeliveryError

logger = logging.getLogger(__name__)


class MailTransport(ABC):
    """Abstract base for mail delivery."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier for this transport (e.g. 'resend', 'mock')."""

    @abstractmethod
    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        """Deliver one message.

        Args:
            to: Recipient address.
            subject: Subject line.
            html: HTML body.
            text: Plain-text body.

        Returns:
            Provider message id.

        Raises:
            MailDeliveryError: If the provider rejected the message or
                could not be reached.
        """


class ResendTransport(MailTransport):
    """Delivers mail through the Resend HTTP API.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._from_email = from_email
        self._api_url = api_url
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "resend"

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        payload = {
            "from": self._from_email,
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise MailDeliveryError(f"Resend API timed out sending to {to}") from e
        except httpx.HTTPError as e:
            raise MailDeliveryError(f"Resend API unreachable: {e}") from e

        if not resp.is_success:
            raise MailDeliveryError(
                f"Resend API returned {resp.status_code}: {resp.text[:200]}"
            )

        message_id = resp.json().get("id", "")
        logger.info("Email sent to %s (id=%s)", to, message_id)
        return message_id


@dataclass(frozen=True)
class SentMessage:
    to: str
    subject: str
    html: str
    text: str
    message_id: str


class MockMailTransport(MailTransport):
    """Records messages instead of sending them.

    Set ``fail_with`` to make every send raise MailDeliveryError.
    """

    def __init__(self, fail_with: str | None = None) -> None:
        self.sent: list[SentMessage] = []
        self.fail_with = fail_with

    @property
    def name(self) -> str:
        return "mock"

    async def send(self, to: str, subject: str, html: str, text: str) -> str:
        if self.fail_with is not None:
            raise MailDeliveryError(self.fail_with)
        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.sent.append(SentMessage(to, subject, html, text, message_id))
        logger.info("Mock email to %s: %s", to, subject)
        return message_id
