"""
Transactional email over the Resend HTTP API.

Sending is best effort: billing never depends on an email going out, so
failures are logged and reported as ``None`` rather than raised.
"""

import logging
from typing import List, Optional, Union

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """Async client for POST /emails."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = settings.RESEND_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")
        self.sender = sender or settings.EMAIL_FROM
        self.timeout = settings.EMAIL_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

        if not self.api_key:
            logger.warning("RESEND_API_KEY not set. Billing emails will not be sent.")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: Union[str, List[str]], subject: str, html: str) -> Optional[str]:
        """Send an email; returns the provider message id or None on failure."""
        if not self.enabled:
            logger.info(f"Email disabled, not sending '{subject}'")
            return None

        recipients = [to] if isinstance(to, str) else list(to)
        payload = {"from": self.sender, "to": recipients, "subject": subject, "html": html}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/emails", json=payload, headers=headers)
            resp.raise_for_status()
            message_id = resp.json().get("id")
        except httpx.HTTPStatusError as e:
            logger.error(f"Email API rejected '{subject}' to {recipients}: HTTP {e.response.status_code}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Email delivery failed for '{subject}' to {recipients}: {e}")
            return None

        logger.info(f"Sent email '{subject}' to {recipients} (id={message_id})")
        return message_id
