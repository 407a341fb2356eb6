"""Tests for taskbus.mailer (address validation and the email service client)."""

import json

import httpx
import pytest

from taskbus.config import EmailClientSettings
from taskbus.errors import DeliveryError, InvalidPayload
from taskbus.mailer import EmailClient, confirmation_message, parse_email
from taskbus.types import QueueEntry

# pylint: disable=missing-function-docstring


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Validation and rendering
# ---------------------------------------------------------------------------


def test_parse_email_accepts_valid_address():
    assert parse_email("user@example.com") == "user@example.com"


@pytest.mark.parametrize("value", ["", "plainaddress", "user@", "@example.com"])
def test_parse_email_rejects_malformed_address(value):
    with pytest.raises(InvalidPayload):
        parse_email(value)


def test_invalid_sender_fails_at_construction():
    with pytest.raises(InvalidPayload):
        EmailClient("http://mail", "not a sender", "token")


def test_confirmation_message_links_to_frontend():
    message = confirmation_message(QueueEntry("abc123", "u@example.com"), "http://front/")
    assert message.subject == "Recipe App confirm registration"
    assert "http://front/confirm?token=abc123" in message.html_body
    assert message.text_body == (
        "Visit http://front/confirm?token=abc123 to confirm your registration."
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_posts_expected_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ErrorCode": 0})

    http_client = _client(handler)
    client = EmailClient(
        "http://mail/", "noreply@recipes.dev", "secret", http_client=http_client
    )
    await client.send("user@example.com", "Subject", "<p>hi</p>", "hi")
    await http_client.aclose()

    assert len(seen) == 1
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "http://mail/email"
    assert request.headers["X-Postmark-Server-Token"] == "secret"
    assert json.loads(request.content) == {
        "From": "noreply@recipes.dev",
        "To": "user@example.com",
        "Subject": "Subject",
        "HtmlBody": "<p>hi</p>",
        "TextBody": "hi",
    }


@pytest.mark.asyncio
async def test_server_error_is_delivery_error():
    http_client = _client(lambda request: httpx.Response(500, text="boom"))
    client = EmailClient("http://mail", "noreply@recipes.dev", "t", http_client=http_client)

    with pytest.raises(DeliveryError, match="500"):
        await client.send("user@example.com", "s", "h", "t")
    await http_client.aclose()


@pytest.mark.asyncio
async def test_transport_error_is_delivery_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    http_client = _client(handler)
    client = EmailClient("http://mail", "noreply@recipes.dev", "t", http_client=http_client)

    with pytest.raises(DeliveryError, match="connection refused"):
        await client.send("user@example.com", "s", "h", "t")
    await http_client.aclose()


@pytest.mark.asyncio
async def test_from_settings_uses_configured_values():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    settings = EmailClientSettings(
        base_url="http://mail.local",
        sender_email="team@recipes.dev",
        authorization_token="tok",
        timeout_milliseconds=2500,
    )
    assert settings.timeout == 2.5

    http_client = _client(handler)
    client = EmailClient.from_settings(settings, http_client=http_client)
    await client.send("user@example.com", "s", "h", "t")
    await http_client.aclose()

    assert str(seen[0].url) == "http://mail.local/email"
    assert seen[0].headers["X-Postmark-Server-Token"] == "tok"
    assert json.loads(seen[0].content)["From"] == "team@recipes.dev"
