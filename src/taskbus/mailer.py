"""
Email delivery: recipient validation and the HTTP client for the email service.

The service exposes a Postmark-style endpoint:

  POST {base_url}/email
  X-Postmark-Server-Token: <token>
  {"From": ..., "To": ..., "Subject": ..., "HtmlBody": ..., "TextBody": ...}

Any transport error or non-2xx response is a DeliveryError.
"""

import logging
from typing import Optional, Protocol

import httpx
from pydantic import EmailStr, TypeAdapter, ValidationError

from taskbus.config import EmailClientSettings
from taskbus.errors import DeliveryError, InvalidPayload
from taskbus.types import EmailMessage, QueueEntry

logger = logging.getLogger(__name__)

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def parse_email(value: str) -> str:
    """Validate an email address; raise InvalidPayload if it is malformed."""
    try:
        return _EMAIL_ADAPTER.validate_python(value)
    except ValidationError as e:
        reason = e.errors()[0].get("msg", "invalid email") if e.errors() else str(e)
        raise InvalidPayload(f"invalid email {value!r}: {reason}") from e


def confirmation_message(entry: QueueEntry, frontend_url: str) -> EmailMessage:
    """Render the registration confirmation email for a queue entry."""
    link = f"{frontend_url.rstrip('/')}/confirm?token={entry.task_id}"
    return EmailMessage(
        subject="Recipe App confirm registration",
        html_body=f"Visit <a href={link}>the website</a> to confirm your registration.",
        text_body=f"Visit {link} to confirm your registration.",
    )


class EmailSender(Protocol):
    """Anything that can deliver one email."""

    async def send(
        self, recipient: str, subject: str, html_body: str, text_body: str
    ) -> None:
        """Deliver the email or raise DeliveryError."""


class EmailClient:
    """
    HTTP client for the email service.
    """

    def __init__(
        self,
        base_url: str,
        sender: str,
        authorization_token: str,
        *,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        sender: the From address; validated here so a bad config fails at startup.
        http_client: optional preconfigured client (tests pass one with a MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.sender = parse_email(sender)
        self._token = authorization_token
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(
        cls,
        settings: EmailClientSettings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "EmailClient":
        return cls(
            settings.base_url,
            settings.sender_email,
            settings.authorization_token.get_secret_value(),
            timeout=settings.timeout,
            http_client=http_client,
        )

    async def send(
        self, recipient: str, subject: str, html_body: str, text_body: str
    ) -> None:
        """POST one email to the service."""
        body = {
            "From": self.sender,
            "To": recipient,
            "Subject": subject,
            "HtmlBody": html_body,
            "TextBody": text_body,
        }
        try:
            response = await self._client.post(
                f"{self.base_url}/email",
                json=body,
                headers={"X-Postmark-Server-Token": self._token},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(
                f"email service returned {e.response.status_code} for {recipient}"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryError(f"email request to {recipient} failed: {e}") from e
        logger.debug("email sent to %s", recipient)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
