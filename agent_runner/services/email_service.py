"""Outbound email: every message lands in the outbox, SMTP delivery is optional."""

import html
import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional
from urllib.parse import unquote, urlparse

from sqlalchemy.orm import Session

from ..config import settings
from ..repositories.ops_repository import OpsRepository

logger = logging.getLogger("agent_runner.services.email_service")


def _markdown_to_basic_html(markdown: str) -> str:
    return (
        '<pre style="white-space:pre-wrap;font-family:ui-monospace,Menlo,Monaco,Consolas,monospace">'
        f"{html.escape(markdown)}</pre>"
    )


def _smtp_send(smtp_url: str, sender: str, to: str, subject: str, body_markdown: str) -> None:
    """Deliver one message. ``smtp_url`` is ``smtp[s]://user:pass@host:port``."""
    url = urlparse(smtp_url)
    message = MIMEMultipart("alternative")
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.attach(MIMEText(body_markdown, "plain"))
    message.attach(MIMEText(_markdown_to_basic_html(body_markdown), "html"))

    if url.scheme == "smtps":
        client = smtplib.SMTP_SSL(url.hostname, url.port or 465, timeout=30)
    else:
        client = smtplib.SMTP(url.hostname, url.port or 587, timeout=30)
    with client:
        if url.scheme != "smtps":
            client.starttls()
        if url.username:
            client.login(unquote(url.username), unquote(url.password or ""))
        client.send_message(message)


def send_email_via_outbox(
    db: Session,
    user_id: str,
    to: str,
    subject: str,
    body_markdown: str,
    agent_id: Optional[str] = None,
) -> dict:
    """Store the email, then try to send it. Returns ``{ok, outboxId, sent}`` or ``{ok: False, error, ...}``."""
    repo = OpsRepository(db)
    row = repo.add_outbox(user_id=user_id, to=to, subject=subject, body_markdown=body_markdown, agent_id=agent_id)

    if not settings.SMTP_URL:
        return {"ok": True, "outboxId": row.id, "sent": False}

    try:
        _smtp_send(settings.SMTP_URL, settings.SMTP_FROM or to, to, subject, body_markdown)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("SMTP delivery failed for outbox %s: %s", row.id, exc)
        repo.update_outbox(row, status="failed", error=str(exc))
        return {"ok": False, "error": "smtp_failed", "outboxId": row.id, "message": str(exc)}

    repo.update_outbox(row, status="sent", sent_at=datetime.now(timezone.utc))
    return {"ok": True, "outboxId": row.id, "sent": True}
