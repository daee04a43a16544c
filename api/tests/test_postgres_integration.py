from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from app.services.companies import CompanyAggregateMaintainer
from app.services.notifications import NotificationDispatcher
from app.services.repository import PostgresRepository, RepositoryConflictError

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "db" / "schema.sql"

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("JB_DATABASE_URL") or os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("integration tests require JB_DATABASE_URL or DATABASE_URL")
    return url


@pytest.fixture(autouse=True)
def reset_tables(database_url: str) -> None:
    _run(_reset_schema(database_url))


def _job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "SRE",
        "company": "Acme",
        "category": "Operations",
        "job_type": "Full-time",
        "remote": True,
        "apply": "https://acme.example/apply",
        "end_date": datetime.now(timezone.utc) + timedelta(days=10),
    }
    payload.update(overrides)
    return payload


def test_incremental_updates_and_reconcile_agree(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[dict[str, Any], Any, dict[str, Any]]:
        maintainer = CompanyAggregateMaintainer(repo)
        for city in ("Austin", "Denver", "Boston"):
            await maintainer.incremental_update(await repo.create_job(_job_payload(remote=False, city=city)))
        incremental = await repo.get_company("Acme")
        summary = await maintainer.reconcile_all()
        reconciled = await repo.get_company("Acme")
        return incremental, summary, reconciled

    incremental, summary, reconciled = _run(_with_repository(database_url, scenario))

    assert incremental["open_positions"] == 3
    assert incremental["location"] == "Boston"
    assert summary.companies_processed == 1
    assert summary.created == 0
    assert reconciled["open_positions"] == 3
    assert reconciled["location"] == "Austin"


def test_concurrent_increments_do_not_lose_updates(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> dict[str, Any]:
        await asyncio.gather(
            *(
                repo.increment_company(company_name="Globex", logo=None, location=None, industry="Sales")
                for _ in range(8)
            )
        )
        return await repo.get_company("Globex")

    company = _run(_with_repository(database_url, scenario))

    assert company["open_positions"] == 8


def test_apply_is_idempotent_under_concurrency(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[list[Any], dict[str, Any]]:
        job = await repo.create_job(_job_payload())
        results = await asyncio.gather(*(repo.apply_to_job(job["id"], "user-7") for _ in range(4)))
        return results, await repo.get_job(job["id"])

    results, job = _run(_with_repository(database_url, scenario))

    assert sum(1 for result in results if result.new) == 1
    assert all(result.applied for result in results)
    assert job["applications_count"] == 1


def test_subscriptions_and_legacy_audience(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[list[str], list[str]]:
        await repo.pool.execute(
            "insert into subscriptions (email, country, channels) values ('legacy@example.com', '', null)"
        )
        await repo.subscribe(email="both@example.com", channel="job")
        await repo.subscribe(email="both@example.com", channel="blog")
        with pytest.raises(RepositoryConflictError):
            await repo.subscribe(email="both@example.com", channel="blog")
        dispatcher = NotificationDispatcher(repo, mailer=None)  # type: ignore[arg-type]
        return await dispatcher.select_audience("job"), await dispatcher.select_audience("blog")

    job_audience, blog_audience = _run(_with_repository(database_url, scenario))

    assert sorted(job_audience) == ["both@example.com", "legacy@example.com"]
    assert blog_audience == ["both@example.com"]


def test_unsubscribe_channel_then_resubscribe(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[dict[str, Any], dict[str, Any]]:
        await repo.subscribe(email="reader@example.com", channel="job", country="US")
        removed = await repo.unsubscribe(email="reader@example.com", channel="job")
        restored = await repo.subscribe(email="reader@example.com", channel="blog")
        return removed, restored

    removed, restored = _run(_with_repository(database_url, scenario))

    assert removed["channels"] == []
    assert removed["unsubscribed"] is True
    assert restored["channels"] == ["blog"]
    assert restored["unsubscribed"] is False
    assert restored["country"] == "US"


def test_legacy_subscription_keeps_job_membership(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[dict[str, Any], dict[str, Any], list[str]]:
        await repo.pool.execute(
            "insert into subscriptions (email, country, channels) values ('old@example.com', 'UK', null), "
            "('older@example.com', '', null)"
        )
        with pytest.raises(RepositoryConflictError):
            await repo.subscribe(email="old@example.com", channel="job")
        upgraded = await repo.subscribe(email="old@example.com", channel="blog")
        left_blog = await repo.unsubscribe(email="older@example.com", channel="blog")
        dispatcher = NotificationDispatcher(repo, mailer=None)  # type: ignore[arg-type]
        return upgraded, left_blog, await dispatcher.select_audience("job")

    upgraded, left_blog, job_audience = _run(_with_repository(database_url, scenario))

    assert upgraded["channels"] == ["job", "blog"]
    assert upgraded["country"] == "UK"
    assert left_blog["channels"] == ["job"]
    assert left_blog["unsubscribed"] is False
    assert sorted(job_audience) == ["old@example.com", "older@example.com"]


def test_catalog_views_ignore_expired_jobs(database_url: str) -> None:
    async def scenario(repo: PostgresRepository) -> tuple[list[dict[str, Any]], dict[str, Any], list[dict[str, Any]]]:
        await repo.create_job(_job_payload(company_logo="acme.png"))
        await repo.create_job(_job_payload(category="Security"))
        await repo.create_job(_job_payload(status="Draft"))
        stale = await repo.create_job(_job_payload(company="Globex"))
        await repo.pool.execute(
            "update job_posts set end_date = now() - interval '1 day' where id = $1::uuid",
            stale["id"],
        )
        return (
            await repo.list_job_categories(),
            await repo.get_job_stats(),
            await repo.list_active_company_counts(limit=10, sort_by_open_positions=True),
        )

    categories, stats, companies = _run(_with_repository(database_url, scenario))

    assert categories == [{"name": "Operations", "count": 2}, {"name": "Security", "count": 1}]
    assert (stats["total_jobs"], stats["active_jobs"], stats["draft_jobs"], stats["expired_jobs"]) == (4, 2, 1, 1)
    assert [(row["company_name"], row["open_positions"]) for row in companies] == [("Acme", 3)]
    assert companies[0]["company_logo"] == "acme.png"


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


async def _with_repository(database_url: str, scenario: Callable[[PostgresRepository], Awaitable[T]]) -> T:
    repo = PostgresRepository(database_url, min_pool_size=1, max_pool_size=4)
    await repo.open()
    try:
        return await scenario(repo)
    finally:
        await repo.close()


async def _reset_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(SCHEMA_PATH.read_text(encoding="utf-8"))
        await conn.execute(
            """
            truncate table
              job_applications,
              job_posts,
              blog_posts,
              companies,
              subscriptions
            restart identity cascade
            """
        )
    finally:
        await conn.close()
