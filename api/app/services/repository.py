from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import TYPE_CHECKING, Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from app.core.config import get_settings

if TYPE_CHECKING:
    from app.services.store import InMemoryRepository

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation collides with existing state."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


@dataclass(slots=True)
class ApplyResult:
    applied: bool
    new: bool
    applications_count: int


@dataclass(slots=True)
class CompanyWriteResult:
    company: dict[str, Any]
    created: bool


JOB_STATUSES = {"Active", "Draft", "Expired"}
CHANNELS = ("job", "blog")
DEFAULT_CHANNEL = "job"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

JOB_TEXT_FIELDS = (
    "title",
    "company",
    "company_logo",
    "category",
    "job_type",
    "work_mode",
    "country",
    "state",
    "city",
    "address",
    "short_description",
    "long_description",
    "experience",
    "education",
    "employment_level",
    "currency",
    "salary_per",
    "benefits",
    "apply",
    "website",
    "posted_by",
    "status",
)
JOB_BOOL_FIELDS = ("featured", "remote")
JOB_FLOAT_FIELDS = ("salary_min", "salary_max")
JOB_DATETIME_FIELDS = ("deadline", "posting_date", "end_date")
JOB_LIST_FIELDS = ("skills", "tags")
JOB_REQUIRED_FIELDS = ("title", "company", "category", "job_type", "apply")
BLOG_TEXT_FIELDS = ("title", "author", "category", "image", "short_desc", "content")
BLOG_REQUIRED_FIELDS = ("title", "author", "category", "content")

JOB_SELECT_SQL = """
  id::text as id,
  title,
  company,
  company_logo,
  category,
  job_type,
  work_mode,
  featured,
  country,
  state,
  city,
  address,
  remote,
  short_description,
  long_description,
  skills,
  experience,
  education,
  employment_level,
  salary_min,
  salary_max,
  currency,
  salary_per,
  benefits,
  deadline,
  posting_date,
  end_date,
  apply,
  website,
  tags,
  posted_by,
  status,
  applications_count,
  schema_json_ld,
  created_at,
  updated_at
"""

BLOG_SELECT_SQL = """
  id::text as id,
  title,
  author,
  category,
  image,
  short_desc,
  content,
  tags,
  published_at,
  created_at,
  updated_at
"""

COMPANY_SELECT_SQL = """
  id::text as id,
  company_name,
  logo,
  location,
  industry,
  open_positions,
  featured,
  description,
  created_at,
  updated_at
"""

def normalize_channel(channel: Any) -> str:
    """Map a requested channel onto a known one; anything unrecognized means job alerts."""
    normalized = channel.strip().lower() if isinstance(channel, str) else ""
    return normalized if normalized in CHANNELS else DEFAULT_CHANNEL


SUBSCRIPTION_SELECT_SQL = """
  id::text as id,
  email,
  country,
  channels,
  unsubscribed,
  created_at,
  updated_at
"""


class RepositoryBase:
    """Validation and read rules shared by every storage backend."""

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    async def get_job(self, job_id: str, *, now: datetime | None = None) -> dict[str, Any]:
        current = now or datetime.now(timezone.utc)
        job = await self._fetch_job(job_id)
        if job["status"] != "Expired" and self.is_job_expired(job, now=current):
            job["status"] = "Expired"
            await self._correct_expired_status(job["id"])
        return job

    async def _fetch_job(self, job_id: str) -> dict[str, Any]:
        raise NotImplementedError

    async def _correct_expired_status(self, job_id: str) -> None:
        try:
            await self.mark_job_expired(job_id)
        except (RepositoryError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
            # Read still reports Expired; the stored status catches up on a later read.
            logger.exception("failed to persist lazy expiry for job id=%s", job_id)

    async def mark_job_expired(self, job_id: str) -> None:
        raise NotImplementedError

    @staticmethod
    def is_job_expired(job: dict[str, Any], *, now: datetime) -> bool:
        if job.get("status") == "Expired":
            return True
        end_date = job.get("end_date")
        return isinstance(end_date, datetime) and end_date < now

    def _prepare_job_create(self, payload: dict[str, Any], *, now: datetime) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for field in JOB_TEXT_FIELDS:
            record[field] = self._coerce_text(payload.get(field))
        missing = [field for field in JOB_REQUIRED_FIELDS if not record[field]]
        if missing:
            raise RepositoryValidationError(f"missing required fields: {', '.join(missing)}")

        for field in JOB_BOOL_FIELDS:
            record[field] = self._coerce_bool(payload.get(field))
        for field in JOB_FLOAT_FIELDS:
            record[field] = self._coerce_float(payload.get(field))
        for field in JOB_DATETIME_FIELDS:
            record[field] = self._coerce_datetime(payload.get(field))
        for field in JOB_LIST_FIELDS:
            record[field] = self._coerce_text_list(payload.get(field))

        self._validate_end_date(record["end_date"], now=now, required=True)
        record["status"] = self._validate_job_status(record["status"] or "Active")
        record["currency"] = record["currency"] or "USD"
        record["salary_per"] = record["salary_per"] or "Year"
        record["posting_date"] = record["posting_date"] or now
        record["schema_json_ld"] = self._coerce_json_ld(payload.get("schema_json_ld"))
        return record

    def _prepare_job_update(self, payload: dict[str, Any], *, now: datetime) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        for field, value in payload.items():
            if field in JOB_TEXT_FIELDS:
                updates[field] = self._coerce_text(value)
            elif field in JOB_BOOL_FIELDS:
                updates[field] = self._coerce_bool(value)
            elif field in JOB_FLOAT_FIELDS:
                updates[field] = self._coerce_float(value)
            elif field in JOB_DATETIME_FIELDS:
                updates[field] = self._coerce_datetime(value)
            elif field in JOB_LIST_FIELDS:
                updates[field] = self._coerce_text_list(value)
            elif field == "schema_json_ld":
                updates[field] = self._coerce_json_ld(value)

        blanked = [field for field in JOB_REQUIRED_FIELDS if field in updates and not updates[field]]
        if blanked:
            raise RepositoryValidationError(f"required fields cannot be empty: {', '.join(blanked)}")
        if "end_date" in updates:
            self._validate_end_date(updates["end_date"], now=now, required=True)
        if "status" in updates:
            updates["status"] = self._validate_job_status(updates["status"] or "Active")
        return updates

    def _prepare_blog_create(self, payload: dict[str, Any], *, now: datetime) -> dict[str, Any]:
        record: dict[str, Any] = {field: self._coerce_text(payload.get(field)) for field in BLOG_TEXT_FIELDS}
        missing = [field for field in BLOG_REQUIRED_FIELDS if not record[field]]
        if missing:
            raise RepositoryValidationError(f"{', '.join(missing)} are required")
        record["tags"] = self._coerce_text_list(payload.get("tags"))
        record["published_at"] = self._coerce_datetime(payload.get("published_at")) or now
        return record

    @classmethod
    def _require_category(cls, category: Any) -> str:
        normalized = cls._coerce_text(category)
        if not normalized:
            raise RepositoryValidationError("category is required")
        return normalized

    @staticmethod
    def _recent_job(job: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": str(job["id"]),
            "title": job["title"],
            "status": job["status"] or "Active",
            "date": job["created_at"],
            "company": job["company"] or "",
            "applications": int(job["applications_count"] or 0),
        }

    @staticmethod
    def _validate_end_date(end_date: datetime | None, *, now: datetime, required: bool) -> None:
        if end_date is None:
            if required:
                raise RepositoryValidationError("end_date is required and must be a valid date")
            return
        if end_date <= now:
            raise RepositoryValidationError("end_date must be a future date")

    @staticmethod
    def _validate_job_status(status: str) -> str:
        if status not in JOB_STATUSES:
            raise RepositoryValidationError("status must be one of: Active, Draft, Expired")
        return status

    @classmethod
    def _normalize_email(cls, email: Any) -> str:
        normalized = (cls._coerce_text(email) or "").lower()
        if not normalized or not EMAIL_RE.match(normalized):
            raise RepositoryValidationError("valid email is required")
        return normalized

    @staticmethod
    def _normalize_channel(channel: Any) -> str:
        return normalize_channel(channel)

    @staticmethod
    def _normalize_optional_channel(channel: Any) -> str | None:
        normalized = channel.strip().lower() if isinstance(channel, str) else ""
        return normalized if normalized in CHANNELS else None

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_text_list(value: Any) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            return []
        items: list[str] = []
        for item in value:
            if not isinstance(item, str):
                continue
            stripped = item.strip()
            if stripped:
                items.append(stripped)
        return items

    @staticmethod
    def _coerce_float(value: Any) -> float | None:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str) and not value.strip():
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _coerce_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return False

    @staticmethod
    def _coerce_datetime(value: Any) -> datetime | None:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return None
            try:
                dt = datetime.fromisoformat(candidate.replace("Z", "+00:00"))
            except ValueError:
                return None
        else:
            return None

        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def _coerce_json_ld(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            return value or None
        return json.dumps(value)


class PostgresRepository(RepositoryBase):
    def __init__(self, database_url: str, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def open(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ping(self) -> bool:
        if self._pool is None:
            return False
        try:
            await self._pool.fetchval("select 1")
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError):
            logger.warning("database ping failed", exc_info=True)
            return False
        return True

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RepositoryUnavailableError("database pool is not open")
        return self._pool

    async def create_job(self, payload: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
        record = self._prepare_job_create(payload, now=now or datetime.now(timezone.utc))
        columns = list(record)
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        row = await self.pool.fetchrow(
            f"""
            insert into job_posts ({", ".join(columns)})
            values ({placeholders})
            returning {JOB_SELECT_SQL}
            """,
            *record.values(),
        )
        return self._job_row_to_dict(row)

    async def _fetch_job(self, job_id: str) -> dict[str, Any]:
        try:
            row = await self.pool.fetchrow(
                f"select {JOB_SELECT_SQL} from job_posts where id = $1::uuid",
                job_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def mark_job_expired(self, job_id: str) -> None:
        await self.pool.execute(
            "update job_posts set status = 'Expired', updated_at = now() where id = $1::uuid and status <> 'Expired'",
            job_id,
        )

    async def list_jobs(
        self,
        *,
        limit: int,
        offset: int,
        featured: bool | None = None,
        now: datetime | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        conditions = [f"(end_date is null or end_date >= {bind(now or datetime.now(timezone.utc))})"]
        if featured is not None:
            conditions.append(f"featured = {bind(featured)}")
        where_sql = " and ".join(conditions)

        total = await self.pool.fetchval(f"select count(*) from job_posts where {where_sql}", *params)
        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await self.pool.fetch(
            f"""
            select {JOB_SELECT_SQL}
            from job_posts
            where {where_sql}
            order by created_at desc, id asc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return [self._job_row_to_dict(row) for row in rows], int(total or 0)

    async def update_job(
        self,
        job_id: str,
        payload: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        updates = self._prepare_job_update(payload, now=now or datetime.now(timezone.utc))
        if not updates:
            return await self.get_job(job_id, now=now)

        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(updates, start=2))
        try:
            row = await self.pool.fetchrow(
                f"""
                update job_posts
                set {assignments}, updated_at = now()
                where id = $1::uuid
                returning {JOB_SELECT_SQL}
                """,
                job_id,
                *updates.values(),
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def delete_job(self, job_id: str) -> None:
        try:
            deleted = await self.pool.fetchval("delete from job_posts where id = $1::uuid returning id", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if deleted is None:
            raise RepositoryNotFoundError("job not found")

    async def apply_to_job(self, job_id: str, user_id: str, *, now: datetime | None = None) -> ApplyResult:
        job = await self.get_job(job_id, now=now)
        if job["status"] == "Expired":
            raise RepositoryConflictError("job has expired")

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                try:
                    async with conn.transaction():
                        await conn.execute(
                            "insert into job_applications (job_id, user_id) values ($1::uuid, $2)",
                            job_id,
                            user_id,
                        )
                except pg_exc.UniqueViolationError:
                    count = await conn.fetchval(
                        "select applications_count from job_posts where id = $1::uuid",
                        job_id,
                    )
                    return ApplyResult(applied=True, new=False, applications_count=int(count or 0))

                count = await conn.fetchval(
                    """
                    update job_posts
                    set applications_count = applications_count + 1
                    where id = $1::uuid
                    returning applications_count
                    """,
                    job_id,
                )
        return ApplyResult(applied=True, new=True, applications_count=int(count or 0))

    async def get_apply_status(self, job_id: str, user_id: str) -> dict[str, Any]:
        job = await self._fetch_job(job_id)
        applied = await self.pool.fetchval(
            "select exists(select 1 from job_applications where job_id = $1::uuid and user_id = $2)",
            job_id,
            user_id,
        )
        return {"applied": bool(applied), "applications_count": int(job["applications_count"] or 0)}

    async def list_company_sources(self) -> list[dict[str, Any]]:
        rows = await self.pool.fetch(
            """
            select company, company_logo, category, remote, city, state, country
            from job_posts
            order by created_at asc, id asc
            """
        )
        return [dict(row) for row in rows]

    async def list_job_categories(self, *, now: datetime | None = None) -> list[dict[str, Any]]:
        rows = await self.pool.fetch(
            """
            select category as name, count(*)::int as count
            from job_posts
            where end_date is null or end_date >= $1
            group by category
            order by category asc
            """,
            now or datetime.now(timezone.utc),
        )
        return [dict(row) for row in rows]

    async def get_job_stats(self, *, now: datetime | None = None, recent_limit: int = 10) -> dict[str, Any]:
        current = now or datetime.now(timezone.utc)
        async with self.pool.acquire() as conn:
            totals = await conn.fetchrow(
                """
                select
                  count(*)::int as total_jobs,
                  count(*) filter (
                    where (end_date is null or end_date >= $1) and status <> 'Draft'
                  )::int as active_jobs,
                  count(*) filter (where status = 'Draft')::int as draft_jobs,
                  count(*) filter (where status = 'Expired' or end_date < $1)::int as expired_jobs
                from job_posts
                """,
                current,
            )
            recent = await conn.fetch(
                """
                select id::text as id, title, status, company, applications_count, created_at
                from job_posts
                order by created_at desc, id asc
                limit $1
                """,
                recent_limit,
            )
        return {**dict(totals), "recent_jobs": [self._recent_job(dict(row)) for row in recent]}

    async def list_active_company_counts(
        self,
        *,
        limit: int,
        sort_by_open_positions: bool = False,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        order_sql = "open_positions desc, company_name asc" if sort_by_open_positions else "company_name asc"
        rows = await self.pool.fetch(
            f"""
            select
              company as company_name,
              count(*)::int as open_positions,
              (array_agg(company_logo order by created_at asc, id asc))[1] as company_logo,
              (array_agg(category order by created_at asc, id asc))[1] as category
            from job_posts
            where (end_date is null or end_date >= $1)
              and status <> 'Expired'
              and company <> ''
            group by company
            order by {order_sql}
            limit $2
            """,
            now or datetime.now(timezone.utc),
            limit,
        )
        return [dict(row) for row in rows]

    async def create_blog(self, payload: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
        record = self._prepare_blog_create(payload, now=now or datetime.now(timezone.utc))
        columns = list(record)
        placeholders = ", ".join(f"${index}" for index in range(1, len(columns) + 1))
        row = await self.pool.fetchrow(
            f"""
            insert into blog_posts ({", ".join(columns)})
            values ({placeholders})
            returning {BLOG_SELECT_SQL}
            """,
            *record.values(),
        )
        return self._blog_row_to_dict(row)

    async def get_blog(self, blog_id: str) -> dict[str, Any]:
        try:
            row = await self.pool.fetchrow(f"select {BLOG_SELECT_SQL} from blog_posts where id = $1::uuid", blog_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("blog not found") from exc
        if not row:
            raise RepositoryNotFoundError("blog not found")
        return self._blog_row_to_dict(row)

    async def list_blogs(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        rows = await self.pool.fetch(
            f"""
            select {BLOG_SELECT_SQL}
            from blog_posts
            order by published_at desc, created_at desc
            limit $1
            offset $2
            """,
            limit,
            offset,
        )
        return [self._blog_row_to_dict(row) for row in rows]

    async def list_blog_categories(self) -> list[str]:
        rows = await self.pool.fetch(
            "select distinct category from blog_posts where category <> '' order by category asc"
        )
        return [row["category"] for row in rows]

    async def list_blogs_by_category(self, category: str) -> list[dict[str, Any]]:
        normalized = self._require_category(category)
        rows = await self.pool.fetch(
            f"""
            select {BLOG_SELECT_SQL}
            from blog_posts
            where category = $1
            order by published_at desc, created_at desc
            """,
            normalized,
        )
        return [self._blog_row_to_dict(row) for row in rows]

    async def increment_company(
        self,
        *,
        company_name: str,
        logo: str | None,
        location: str | None,
        industry: str | None,
    ) -> CompanyWriteResult:
        row = await self.pool.fetchrow(
            f"""
            insert into companies (company_name, logo, location, industry, open_positions)
            values ($1, $2, $3, $4, 1)
            on conflict (company_name) do update
            set
              open_positions = companies.open_positions + 1,
              logo = excluded.logo,
              location = excluded.location,
              industry = excluded.industry,
              updated_at = now()
            returning {COMPANY_SELECT_SQL}, (xmax = 0) as inserted
            """,
            company_name,
            logo,
            location,
            industry,
        )
        company = dict(row)
        created = bool(company.pop("inserted"))
        return CompanyWriteResult(company=company, created=created)

    async def set_company_aggregate(
        self,
        *,
        company_name: str,
        open_positions: int,
        logo: str | None,
        location: str | None,
        industry: str | None,
    ) -> CompanyWriteResult:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                insert into companies (company_name, logo, location, industry, open_positions)
                values ($1, $2, $3, $4, $5)
                on conflict (company_name) do update
                set
                  open_positions = excluded.open_positions,
                  logo = excluded.logo,
                  location = excluded.location,
                  industry = excluded.industry,
                  updated_at = now()
                where (companies.open_positions, companies.logo, companies.location, companies.industry)
                  is distinct from (excluded.open_positions, excluded.logo, excluded.location, excluded.industry)
                returning {COMPANY_SELECT_SQL}, (xmax = 0) as inserted
                """,
                company_name,
                logo,
                location,
                industry,
                open_positions,
            )
            if row is None:
                # Conflict with identical values: the row exists and is already current.
                row = await conn.fetchrow(
                    f"select {COMPANY_SELECT_SQL}, false as inserted from companies where company_name = $1",
                    company_name,
                )
        company = dict(row)
        created = bool(company.pop("inserted"))
        return CompanyWriteResult(company=company, created=created)

    async def zero_companies_except(self, company_names: list[str]) -> int:
        count = await self.pool.fetchval(
            """
            with touched as (
              update companies
              set
                open_positions = 0,
                updated_at = case when open_positions = 0 then updated_at else now() end
              where not (company_name = any($1::text[]))
              returning 1
            )
            select count(*) from touched
            """,
            company_names,
        )
        return int(count or 0)

    async def delete_companies_except(self, company_names: list[str]) -> int:
        count = await self.pool.fetchval(
            """
            with removed as (
              delete from companies
              where not (company_name = any($1::text[]))
              returning 1
            )
            select count(*) from removed
            """,
            company_names,
        )
        return int(count or 0)

    async def get_company(self, company_name: str) -> dict[str, Any]:
        row = await self.pool.fetchrow(
            f"select {COMPANY_SELECT_SQL} from companies where company_name = $1",
            company_name,
        )
        if not row:
            raise RepositoryNotFoundError("company not found")
        return dict(row)

    async def get_companies_by_names(self, company_names: list[str]) -> list[dict[str, Any]]:
        if not company_names:
            return []
        rows = await self.pool.fetch(
            f"select {COMPANY_SELECT_SQL} from companies where company_name = any($1::text[])",
            company_names,
        )
        return [dict(row) for row in rows]

    async def list_companies(
        self,
        *,
        limit: int,
        featured: bool | None = None,
        sort_by_open_positions: bool = False,
    ) -> list[dict[str, Any]]:
        params: list[Any] = []
        where_sql = "true"
        if featured is not None:
            params.append(featured)
            where_sql = f"featured = ${len(params)}"
        order_sql = "open_positions desc, created_at desc" if sort_by_open_positions else "created_at desc"
        params.append(limit)
        rows = await self.pool.fetch(
            f"""
            select {COMPANY_SELECT_SQL}
            from companies
            where {where_sql}
            order by {order_sql}
            limit ${len(params)}
            """,
            *params,
        )
        return [dict(row) for row in rows]

    async def subscribe(self, *, email: str, channel: str | None, country: str | None = None) -> dict[str, Any]:
        normalized_email = self._normalize_email(email)
        normalized_channel = self._normalize_channel(channel)
        normalized_country = self._coerce_text(country)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                existing = await conn.fetchrow(
                    f"select {SUBSCRIPTION_SELECT_SQL} from subscriptions where email = $1 for update",
                    normalized_email,
                )
                if existing is not None:
                    channels = existing["channels"]
                    if channels is None:
                        channels = [DEFAULT_CHANNEL]
                    if not existing["unsubscribed"] and normalized_channel in channels:
                        raise RepositoryConflictError("email already subscribed to this channel")
                    row = await self._merge_subscription(conn, normalized_email, normalized_channel, normalized_country)
                else:
                    try:
                        async with conn.transaction():
                            row = await conn.fetchrow(
                                f"""
                                insert into subscriptions (email, country, channels)
                                values ($1, $2, $3::text[])
                                returning {SUBSCRIPTION_SELECT_SQL}
                                """,
                                normalized_email,
                                normalized_country or "",
                                [normalized_channel],
                            )
                    except pg_exc.UniqueViolationError:
                        row = await self._merge_subscription(
                            conn,
                            normalized_email,
                            normalized_channel,
                            normalized_country,
                        )
        return self._subscription_row_to_dict(row)

    async def _merge_subscription(
        self,
        conn: asyncpg.Connection,
        email: str,
        channel: str,
        country: str | None,
    ) -> asyncpg.Record:
        return await conn.fetchrow(
            f"""
            update subscriptions
            set
              unsubscribed = false,
              country = coalesce($3, country),
              channels = case
                when channels is null and $2 = 'job' then array['job']::text[]
                when channels is null then array['job', $2]::text[]
                when $2 = any(channels) then channels
                else array_append(channels, $2)
              end,
              updated_at = now()
            where email = $1
            returning {SUBSCRIPTION_SELECT_SQL}
            """,
            email,
            channel,
            country,
        )

    async def unsubscribe(self, *, email: str, channel: str | None = None) -> dict[str, Any]:
        normalized_email = (self._coerce_text(email) or "").lower()
        if not normalized_email:
            raise RepositoryValidationError("email is required")
        normalized_channel = self._normalize_optional_channel(channel)

        if normalized_channel is None:
            row = await self.pool.fetchrow(
                f"""
                update subscriptions
                set unsubscribed = true, updated_at = now()
                where email = $1
                returning {SUBSCRIPTION_SELECT_SQL}
                """,
                normalized_email,
            )
        else:
            row = await self.pool.fetchrow(
                f"""
                with pruned as (
                  select id, array_remove(coalesce(channels, array['job']::text[]), $2) as remaining
                  from subscriptions
                  where email = $1
                  for update
                )
                update subscriptions s
                set
                  channels = pruned.remaining,
                  unsubscribed = s.unsubscribed or cardinality(pruned.remaining) = 0,
                  updated_at = now()
                from pruned
                where s.id = pruned.id
                returning
                  s.id::text as id,
                  s.email,
                  s.country,
                  s.channels,
                  s.unsubscribed,
                  s.created_at,
                  s.updated_at
                """,
                normalized_email,
                normalized_channel,
            )
        if not row:
            raise RepositoryNotFoundError("subscriber not found")
        return self._subscription_row_to_dict(row)

    async def list_audience(self, channel: str) -> list[dict[str, Any]]:
        rows = await self.pool.fetch(
            f"""
            select {SUBSCRIPTION_SELECT_SQL}
            from subscriptions
            where unsubscribed = false
              and ($1 = any(channels) or ($1 = 'job' and channels is null))
            order by created_at asc
            """,
            channel,
        )
        return [self._subscription_row_to_dict(row) for row in rows]

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        job = dict(row)
        job["skills"] = list(job.get("skills") or [])
        job["tags"] = list(job.get("tags") or [])
        job["applications_count"] = int(job.get("applications_count") or 0)
        return job

    @staticmethod
    def _blog_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        blog = dict(row)
        blog["tags"] = list(blog.get("tags") or [])
        return blog

    @staticmethod
    def _subscription_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        subscription = dict(row)
        channels = subscription.get("channels")
        subscription["channels"] = list(channels) if channels is not None else None
        return subscription


@lru_cache
def get_repository() -> PostgresRepository | InMemoryRepository:
    settings = get_settings()
    if not settings.database_url:
        from app.services.store import InMemoryRepository

        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
