from __future__ import annotations

import logging
from functools import lru_cache
from typing import Protocol

import httpx

from app.core.config import get_settings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool: ...

    async def aclose(self) -> None: ...


class HttpMailer:
    """Delivers messages through a Resend-compatible HTTP API."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        sender: str,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.sender = sender
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        payload = {
            "from": self.sender,
            "to": [recipient],
            "subject": subject,
            "text": text_body,
            "html": html_body,
        }
        try:
            response = await self._client.post("/emails", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("mail send failed recipient=%s error=%s", recipient, exc)
            return False
        if response.is_success:
            return True
        logger.warning("mail send rejected recipient=%s status=%s", recipient, response.status_code)
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


class LoggingMailer:
    """Stands in for a real provider in local development."""

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        logger.info("mail delivery disabled; would send subject=%r to=%s", subject, recipient)
        return True

    async def aclose(self) -> None:
        return None


@lru_cache
def get_mailer() -> Mailer:
    settings = get_settings()
    if not settings.mail_api_key:
        return LoggingMailer()
    return HttpMailer(
        base_url=settings.mail_api_base_url,
        api_key=settings.mail_api_key,
        sender=settings.mail_from,
        timeout_seconds=settings.mail_timeout_seconds,
    )
