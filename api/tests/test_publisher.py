from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from app.core.config import Settings
from app.services.background import BackgroundTaskRunner
from app.services.publisher import Publisher, build_publisher
from app.services.repository import RepositoryUnavailableError, RepositoryValidationError
from app.services.store import InMemoryRepository


def _job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Data Analyst",
        "company": "Globex",
        "category": "Data",
        "job_type": "Contract",
        "apply": "https://globex.example/careers",
        "end_date": datetime.now(timezone.utc) + timedelta(days=14),
    }
    payload.update(overrides)
    return payload


def _blog_payload() -> dict[str, Any]:
    return {"title": "Remote hiring notes", "author": "Ana", "category": "Guides", "content": "Body"}


class RecordingMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        self.sent.append((recipient, subject))
        return True

    async def aclose(self) -> None:
        return None


class BlockingMailer(RecordingMailer):
    def __init__(self) -> None:
        super().__init__()
        self.release = asyncio.Event()

    async def send(self, recipient: str, subject: str, text_body: str, html_body: str) -> bool:
        await self.release.wait()
        return await super().send(recipient, subject, text_body, html_body)


class BrokenCompanyRepository(InMemoryRepository):
    async def increment_company(self, **kwargs: Any):
        raise RepositoryUnavailableError("companies table is locked")


def _publisher(repo: InMemoryRepository, mailer: RecordingMailer) -> tuple[Publisher, BackgroundTaskRunner]:
    runner = BackgroundTaskRunner()
    settings = Settings(frontend_base_url="https://jobs.example", mail_api_key=None)
    return build_publisher(repo, mailer, runner, settings), runner


def test_publish_job_returns_before_alerts_are_delivered() -> None:
    async def run() -> None:
        repo = InMemoryRepository()
        await repo.subscribe(email="reader@example.com", channel="job")
        mailer = BlockingMailer()
        publisher, runner = _publisher(repo, mailer)

        job = await publisher.publish_job(_job_payload())

        assert job["id"] in repo.jobs
        assert repo.companies["Globex"]["open_positions"] == 1
        assert mailer.sent == []
        assert runner.pending == 1

        mailer.release.set()
        await runner.drain(timeout=1.0)

        assert mailer.sent == [("reader@example.com", "New Job Posted: Data Analyst at Globex")]
        assert runner.pending == 0

    asyncio.run(run())


def test_publish_job_survives_company_aggregate_failure() -> None:
    async def run() -> None:
        repo = BrokenCompanyRepository()
        await repo.subscribe(email="reader@example.com", channel="job")
        mailer = RecordingMailer()
        publisher, runner = _publisher(repo, mailer)

        job = await publisher.publish_job(_job_payload())
        await runner.drain(timeout=1.0)

        assert job["id"] in repo.jobs
        assert repo.companies == {}
        assert [recipient for recipient, _ in mailer.sent] == ["reader@example.com"]

    asyncio.run(run())


def test_publish_job_render_failure_stays_in_background(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    def broken_render(job: dict[str, Any], **kwargs: Any):
        raise KeyError("title")

    monkeypatch.setattr("app.services.publisher.render_job", broken_render)

    async def run() -> tuple[dict[str, Any], InMemoryRepository, RecordingMailer]:
        repo = InMemoryRepository()
        await repo.subscribe(email="reader@example.com", channel="job")
        mailer = RecordingMailer()
        publisher, runner = _publisher(repo, mailer)

        job = await publisher.publish_job(_job_payload())
        await runner.drain(timeout=1.0)
        return job, repo, mailer

    job, repo, mailer = asyncio.run(run())

    assert job["id"] in repo.jobs
    assert repo.companies["Globex"]["open_positions"] == 1
    assert mailer.sent == []
    assert f"background task failed name=notify-job-{job['id']}" in caplog.text


def test_publish_job_rejects_past_end_date_without_side_effects() -> None:
    async def run() -> tuple[InMemoryRepository, BackgroundTaskRunner]:
        repo = InMemoryRepository()
        await repo.subscribe(email="reader@example.com", channel="job")
        publisher, runner = _publisher(repo, RecordingMailer())
        with pytest.raises(RepositoryValidationError):
            await publisher.publish_job(_job_payload(end_date=datetime.now(timezone.utc) - timedelta(days=1)))
        return repo, runner

    repo, runner = asyncio.run(run())

    assert repo.jobs == {}
    assert repo.companies == {}
    assert runner.pending == 0


def test_publish_blog_alerts_blog_subscribers_only() -> None:
    async def run() -> RecordingMailer:
        repo = InMemoryRepository()
        await repo.subscribe(email="jobs@example.com", channel="job")
        await repo.subscribe(email="blogs@example.com", channel="blog")
        repo.subscriptions["legacy@example.com"] = {
            "id": "legacy",
            "email": "legacy@example.com",
            "country": "",
            "channels": None,
            "unsubscribed": False,
            "created_at": datetime.now(timezone.utc),
            "updated_at": datetime.now(timezone.utc),
        }
        mailer = RecordingMailer()
        publisher, runner = _publisher(repo, mailer)

        await publisher.publish_blog(_blog_payload())
        await runner.drain(timeout=1.0)
        return mailer

    mailer = asyncio.run(run())

    assert mailer.sent == [("blogs@example.com", "New Blog Posted: Remote hiring notes")]


def test_subscribe_sends_welcome_in_background() -> None:
    async def run() -> tuple[dict[str, Any], RecordingMailer]:
        repo = InMemoryRepository()
        mailer = RecordingMailer()
        publisher, runner = _publisher(repo, mailer)

        subscription = await publisher.subscribe(email="  New@Example.com ", channel="blog", country="DE")
        await runner.drain(timeout=1.0)
        return subscription, mailer

    subscription, mailer = asyncio.run(run())

    assert subscription["email"] == "new@example.com"
    assert subscription["channels"] == ["blog"]
    assert mailer.sent == [("new@example.com", "Welcome to Blog Alerts!")]


def test_runner_logs_failed_background_task(caplog: pytest.LogCaptureFixture) -> None:
    async def explode() -> None:
        raise RuntimeError("mail provider down")

    async def run() -> int:
        runner = BackgroundTaskRunner()
        runner.spawn(explode(), name="notify-test")
        await runner.drain(timeout=1.0)
        return runner.pending

    assert asyncio.run(run()) == 0
    assert "background task failed name=notify-test" in caplog.text
