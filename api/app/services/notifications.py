from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from html import escape
from typing import Any

from opentelemetry import trace

from app.services.companies import derive_location
from app.services.mailer import Mailer

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

BUTTON_STYLE = (
    "display:inline-block;padding:10px 16px;background:#2563eb;color:#fff;"
    "text-decoration:none;border-radius:6px"
)
FOOTER_STYLE = "margin-top:16px;font-size:12px;color:#64748b"
WRAPPER_STYLE = "font-family:Arial,sans-serif;line-height:1.6;color:#0f172a"


@dataclass(slots=True, frozen=True)
class RenderedMessage:
    subject: str
    text_body: str
    html_body: str


@dataclass(slots=True)
class DispatchOutcome:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    failed_recipients: list[str] = field(default_factory=list)


def format_salary_label(job: dict[str, Any]) -> str | None:
    low = job.get("salary_min")
    high = job.get("salary_max")
    if low is None and high is None:
        return None
    # A single bound stands in for both ends of the range.
    low = high if low is None else low
    high = low if high is None else high

    label = f"{_format_amount(low)} - {_format_amount(high)}"
    currency = job.get("currency")
    if currency:
        label = f"{currency} {label}"
    per = job.get("salary_per")
    if per:
        label = f"{label} / {per}"
    return label


def render_job(job: dict[str, Any], *, frontend_base_url: str) -> RenderedMessage:
    url = f"{frontend_base_url.rstrip('/')}/jobs/{job['id']}"
    title = job.get("title") or ""
    company = job.get("company") or ""
    location = derive_location(
        remote=job.get("remote"),
        city=job.get("city"),
        state=job.get("state"),
        country=job.get("country"),
    )
    job_type = job.get("job_type")
    salary = format_salary_label(job)
    country = job.get("country")

    lines = [
        f"A new job has been posted in {country}." if country else "A new job has been posted.",
        "",
        f"Title: {title}",
        f"Company: {company}",
    ]
    if location:
        lines.append(f"Location: {location}")
    if job_type:
        lines.append(f"Job Type: {job_type}")
    if salary:
        lines.append(f"Salary: {salary}")
    lines.extend(["", f"View details: {url}"])

    details = [f"<p style=\"margin:0 0 8px\"><strong>Company:</strong> {escape(company)}</p>"]
    if location:
        details.append(f"<p style=\"margin:0 0 8px\"><strong>Location:</strong> {escape(location)}</p>")
    if job_type:
        details.append(f"<p style=\"margin:0 0 8px\"><strong>Type:</strong> {escape(job_type)}</p>")
    if salary:
        details.append(f"<p style=\"margin:0 0 12px\"><strong>Salary:</strong> {escape(salary)}</p>")

    html_body = (
        f"<div style=\"{WRAPPER_STYLE}\">"
        "<h2 style=\"margin:0 0 12px\">New Job Alert</h2>"
        f"<p style=\"margin:0 0 8px\"><strong>{escape(title)}</strong></p>"
        f"{''.join(details)}"
        f"<a href=\"{escape(url)}\" style=\"{BUTTON_STYLE}\" target=\"_blank\" rel=\"noopener noreferrer\">View Details</a>"
        f"<p style=\"{FOOTER_STYLE}\">You're receiving this because you subscribed to Job Alerts.</p>"
        "</div>"
    )
    return RenderedMessage(
        subject=f"New Job Posted: {title} at {company}",
        text_body="\n".join(lines),
        html_body=html_body,
    )


def render_blog(blog: dict[str, Any], *, frontend_base_url: str) -> RenderedMessage:
    url = f"{frontend_base_url.rstrip('/')}/blog/{blog['id']}"
    title = blog.get("title") or ""
    author = blog.get("author") or ""
    short_desc = (blog.get("short_desc") or "").strip()
    image = (blog.get("image") or "").strip()

    text_parts = [title, f"By {author}" if author else "", short_desc, f"Read: {url}"]
    html_parts = [f"<h2 style=\"margin:0 0 12px\">{escape(title)}</h2>"]
    if author:
        html_parts.append(f"<p style=\"margin:0 0 8px\">By {escape(author)}</p>")
    if short_desc:
        html_parts.append(f"<p style=\"margin:0 0 12px\">{escape(short_desc)}</p>")
    if image:
        html_parts.append(
            f"<img src=\"{escape(image)}\" alt=\"{escape(title)}\" width=\"100%\" "
            "style=\"border-radius:8px;margin:10px 0\" />"
        )
    html_parts.append(
        f"<a href=\"{escape(url)}\" style=\"{BUTTON_STYLE}\" target=\"_blank\" rel=\"noopener noreferrer\">Read Full Blog</a>"
    )
    html_parts.append(f"<p style=\"{FOOTER_STYLE}\">You're receiving this because you subscribed to Blog Alerts.</p>")

    return RenderedMessage(
        subject=f"New Blog Posted: {title}",
        text_body="\n\n".join(part for part in text_parts if part),
        html_body=f"<div style=\"{WRAPPER_STYLE}\">{''.join(html_parts)}</div>",
    )


def render_welcome(channel: str) -> RenderedMessage:
    if channel == "blog":
        label = "Blog Alerts"
        blurb = "We'll email you when new posts are published."
    else:
        label = "Job Alerts"
        blurb = "We'll email you when new jobs are posted."
    text_body = f"Thanks for subscribing to our {label}. {blurb}\n\nYou can unsubscribe anytime."
    html_body = (
        f"<div style=\"{WRAPPER_STYLE}\">"
        "<h2 style=\"margin:0 0 12px\">You're subscribed</h2>"
        f"<p>Thanks for subscribing to our {label}. {blurb}</p>"
        "<p style=\"margin-top:16px\">You can unsubscribe anytime.</p>"
        "</div>"
    )
    return RenderedMessage(subject=f"Welcome to {label}!", text_body=text_body, html_body=html_body)


class NotificationDispatcher:
    def __init__(self, repository: Any, mailer: Mailer) -> None:
        self.repository = repository
        self.mailer = mailer

    async def select_audience(self, channel: str) -> list[str]:
        subscriptions = await self.repository.list_audience(channel)
        return [subscription["email"] for subscription in subscriptions if subscription.get("email")]

    async def dispatch(self, recipients: list[str], message: RenderedMessage) -> DispatchOutcome:
        """Send to every recipient at once and wait for all of them to settle.

        A failed send is tallied, never retried, and never stops the others.
        """
        results = await asyncio.gather(
            *(
                self.mailer.send(recipient, message.subject, message.text_body, message.html_body)
                for recipient in recipients
            ),
            return_exceptions=True,
        )

        outcome = DispatchOutcome(attempted=len(recipients))
        for recipient, result in zip(recipients, results):
            if isinstance(result, BaseException) or not result:
                outcome.failed += 1
                outcome.failed_recipients.append(recipient)
                if isinstance(result, BaseException):
                    logger.debug("mail send raised recipient=%s error=%r", recipient, result)
            else:
                outcome.delivered += 1

        if outcome.failed:
            logger.warning(
                "alert emails failed for %s of %s recipient(s) subject=%r",
                outcome.failed,
                outcome.attempted,
                message.subject,
            )
        return outcome

    async def notify(self, channel: str, render: Callable[[], RenderedMessage]) -> DispatchOutcome:
        """Select the channel audience, render once, and dispatch to everyone."""
        with tracer.start_as_current_span("notifications.notify") as span:
            span.set_attribute("notifications.channel", channel)
            recipients = await self.select_audience(channel)
            span.set_attribute("notifications.audience_size", len(recipients))
            if not recipients:
                return DispatchOutcome()
            message = render()
            logger.info("sending %s alerts to %s subscribers", channel, len(recipients))
            outcome = await self.dispatch(recipients, message)
            span.set_attribute("notifications.failed", outcome.failed)
            return outcome

    async def send_one(self, recipient: str, message: RenderedMessage) -> DispatchOutcome:
        return await self.dispatch([recipient], message)


def _format_amount(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
