from __future__ import annotations

import asyncio
import json

import httpx

from app.services.mailer import HttpMailer, LoggingMailer


def _mailer(handler) -> HttpMailer:
    client = httpx.AsyncClient(
        base_url="https://mail.example",
        transport=httpx.MockTransport(handler),
        headers={"Authorization": "Bearer test-key"},
    )
    return HttpMailer(
        base_url="https://mail.example",
        api_key="test-key",
        sender="Alerts <alerts@jobs.example>",
        client=client,
    )


def test_http_mailer_posts_message_to_emails_endpoint() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "msg_1"})

    async def run() -> bool:
        mailer = _mailer(handler)
        try:
            return await mailer.send("reader@example.com", "Subject", "text", "<p>html</p>")
        finally:
            await mailer.aclose()

    assert asyncio.run(run()) is True
    assert captured[0].url.path == "/emails"
    assert captured[0].headers["Authorization"] == "Bearer test-key"
    assert json.loads(captured[0].content) == {
        "from": "Alerts <alerts@jobs.example>",
        "to": ["reader@example.com"],
        "subject": "Subject",
        "text": "text",
        "html": "<p>html</p>",
    }


def test_http_mailer_reports_rejected_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "invalid recipient"})

    async def run() -> bool:
        mailer = _mailer(handler)
        try:
            return await mailer.send("bad@example.com", "Subject", "text", "<p>html</p>")
        finally:
            await mailer.aclose()

    assert asyncio.run(run()) is False


def test_http_mailer_reports_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def run() -> bool:
        mailer = _mailer(handler)
        try:
            return await mailer.send("reader@example.com", "Subject", "text", "<p>html</p>")
        finally:
            await mailer.aclose()

    assert asyncio.run(run()) is False


def test_logging_mailer_accepts_everything() -> None:
    assert asyncio.run(LoggingMailer().send("reader@example.com", "Subject", "text", "<p>html</p>")) is True
