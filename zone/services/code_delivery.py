"""
Override Code Delivery - channel-agnostic interface.

The transport that actually reaches the user (mail relay, chat bot) is an
external collaborator; this module only defines the seam and two senders.
"""

from typing import Protocol

import httpx
from structlog import get_logger

from zone.config import settings
from zone.exceptions import CodeDeliveryError

logger = get_logger(__name__)


def render_message(code: str, domain: str) -> tuple[str, str]:
    """Subject and plain-text body for an override code."""
    subject = "Zone Unlock Code"
    body = (
        f"Your Zone unlock code for {domain} is: {code}\n\n"
        f"This code will expire in {settings.override_code_expiry_minutes} minutes.\n"
        "If you didn't request this code, please ignore this message."
    )
    return subject, body


class CodeSender(Protocol):
    """Delivers an override code to a user's contact channel."""

    async def send_code(self, recipient: str, code: str, domain: str) -> None:
        """Deliver the code or raise CodeDeliveryError."""
        ...


class LoggingCodeSender:
    """Development sender: records the message in the log instead of sending it."""

    async def send_code(self, recipient: str, code: str, domain: str) -> None:
        subject, _ = render_message(code, domain)
        logger.warning(
            "code_delivery_not_configured",
            recipient=recipient,
            domain=domain,
            subject=subject,
        )


class WebhookCodeSender:
    """Posts the message to an HTTP relay that owns the real mail transport."""

    def __init__(self, url: str, sender: str, http_client: httpx.AsyncClient | None = None):
        self.url = url
        self.sender = sender
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def send_code(self, recipient: str, code: str, domain: str) -> None:
        subject, body = render_message(code, domain)
        try:
            response = await self.http_client.post(
                self.url,
                json={"from": self.sender, "to": recipient, "subject": subject, "text": body},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("code_delivery_rejected", status=e.response.status_code, domain=domain)
            raise CodeDeliveryError(f"relay returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("code_delivery_error", error=str(e), domain=domain)
            raise CodeDeliveryError(str(e)) from e

        logger.info("code_delivered", domain=domain)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


_sender: CodeSender | None = None


def get_code_sender() -> CodeSender:
    """FastAPI dependency returning the configured sender."""
    global _sender
    if _sender is None:
        if settings.code_delivery_webhook_url:
            _sender = WebhookCodeSender(
                settings.code_delivery_webhook_url, settings.code_sender_address
            )
        else:
            _sender = LoggingCodeSender()
    return _sender


async def close_code_sender() -> None:
    """Release the sender's HTTP client on shutdown."""
    global _sender
    if isinstance(_sender, WebhookCodeSender):
        await _sender.close()
    _sender = None
