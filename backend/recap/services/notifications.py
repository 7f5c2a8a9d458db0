"""Best-effort delivery of finished summaries to Slack and email.

Each enabled integration is delivered independently. One channel failing never
stops the others, and ``NotificationFanout.notify`` never raises.
"""

from __future__ import annotations

import html
import logging
import re
import smtplib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import httpx

from recap.config import Settings
from recap.models.integration import Integration
from recap.models.integration_settings import (
    KNOWN_INTEGRATION_TYPES,
    EmailSettings,
    SlackSettings,
    parse_integration_settings,
)
from recap.models.meeting import Meeting

logger = logging.getLogger("recap.notifications")

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"


class NotificationError(RuntimeError):
    pass


class SlackDeliveryError(NotificationError):
    pass


class SlackClient:
    """Minimal Slack Web API / incoming-webhook client."""

    def __init__(self, token: Optional[str] = None, http: Optional[httpx.Client] = None, timeout: float = 10.0) -> None:
        self._token = token
        self._http = http or httpx.Client(timeout=timeout)

    def post_message(
        self,
        channel_id: str,
        text: str,
        blocks: Optional[List[Dict[str, Any]]] = None,
        webhook_url: Optional[str] = None,
    ) -> Optional[str]:
        """Post a message and return its timestamp (None for webhooks)."""
        payload: Dict[str, Any] = {"text": text}
        if blocks:
            payload["blocks"] = blocks

        if webhook_url:
            r = self._http.post(webhook_url, json=payload)
            if r.status_code >= 400:
                raise SlackDeliveryError(f"Slack webhook returned {r.status_code}: {r.text}")
            return None

        if not self._token:
            raise SlackDeliveryError("Slack integration not configured - bot token not provided")

        payload["channel"] = channel_id
        r = self._http.post(
            SLACK_POST_MESSAGE_URL,
            headers={"Authorization": f"Bearer {self._token}"},
            json=payload,
        )
        if r.status_code >= 400:
            raise SlackDeliveryError(f"Slack API returned {r.status_code}: {r.text}")
        body = r.json()
        if not body.get("ok"):
            raise SlackDeliveryError(f"Slack API error: {body.get('error', 'unknown_error')}")
        return body.get("ts")


_TAG_RE = re.compile(r"<[^>]*>")


def html_to_text(markup: str) -> str:
    text = html.unescape(_TAG_RE.sub("", markup))
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class EmailSender:
    """SMTP delivery. Logs a warning and does nothing when credentials are absent."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or Settings()

    @property
    def configured(self) -> bool:
        return bool(self._settings.smtp_user and self._settings.smtp_pass)

    def send(
        self,
        to: Union[str, Sequence[str]],
        subject: str,
        html_body: str,
        text: Optional[str] = None,
    ) -> None:
        s = self._settings
        if not self.configured:
            logger.warning("Email not configured - SMTP credentials not provided")
            return

        recipients = [to] if isinstance(to, str) else list(to)
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = s.smtp_from or s.smtp_user or ""
        msg["To"] = ", ".join(recipients)
        msg.set_content(text or html_to_text(html_body), subtype="plain", charset="utf-8")
        msg.add_alternative(html_body, subtype="html", charset="utf-8")

        try:
            with smtplib.SMTP(s.smtp_host, int(s.smtp_port), timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(s.smtp_user or "", s.smtp_pass or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email: {e}") from e
        logger.info("Email sent to %d recipient(s)", len(recipients))


def _format_date(meeting: Meeting) -> str:
    return meeting.date.strftime("%Y-%m-%d") if meeting.date else ""


def render_summary_email(meeting: Meeting) -> str:
    """HTML body with title, date, duration, summary and any bullet lists."""
    e = html.escape
    parts = [
        f"<h2>{e(meeting.title or '')}</h2>",
        f"<p><strong>Date:</strong> {e(_format_date(meeting))}</p>",
        f"<p><strong>Duration:</strong> {e(meeting.duration or 'Unknown')}</p>",
        "<h3>Summary:</h3>",
        f"<p>{e(meeting.summary or '')}</p>",
    ]
    if meeting.key_decisions:
        items = "".join(f"<li>{e(d)}</li>" for d in meeting.key_decisions)
        parts.append(f"<h3>Key Decisions:</h3><ul>{items}</ul>")
    if meeting.action_items:
        items = "".join(f"<li>{e(a)}</li>" for a in meeting.action_items)
        parts.append(f"<h3>Action Items:</h3><ul>{items}</ul>")
    return "\n".join(parts)


def slack_message(meeting: Meeting) -> tuple[str, List[Dict[str, Any]]]:
    text = f"Meeting Summary: {meeting.title}"
    blocks = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*{meeting.title}*\n{meeting.summary or ''}"},
        }
    ]
    return text, blocks


def _format_subject(template: str, meeting: Meeting) -> str:
    try:
        return template.format(title=meeting.title)
    except (KeyError, IndexError, ValueError):
        # Malformed template; send it as written
        return template


@dataclass
class DeliveryResult:
    integration_id: Optional[int]
    type: str
    ok: bool
    error: Optional[str] = None


class NotificationFanout:
    def __init__(self, slack: SlackClient, email: EmailSender, max_workers: int = 4) -> None:
        self._slack = slack
        self._email = email
        self._max_workers = max(1, max_workers)

    def _deliver_slack(self, meeting: Meeting, cfg: SlackSettings) -> None:
        text, blocks = slack_message(meeting)
        self._slack.post_message(cfg.channel_id, text, blocks=blocks, webhook_url=cfg.webhook_url)

    def _deliver_email(self, meeting: Meeting, cfg: EmailSettings) -> None:
        self._email.send(
            to=cfg.recipients,
            subject=_format_subject(cfg.subject, meeting),
            html_body=render_summary_email(meeting),
        )

    def _deliver(self, meeting: Meeting, integration: Integration) -> DeliveryResult:
        try:
            cfg = parse_integration_settings(integration.type, integration.settings or {})
            if isinstance(cfg, SlackSettings):
                self._deliver_slack(meeting, cfg)
            else:
                self._deliver_email(meeting, cfg)
        except Exception as e:
            logger.error(
                "Failed to send %s notification for meeting %s (integration %s): %s",
                integration.type, meeting.id, integration.id, e,
            )
            return DeliveryResult(integration.id, integration.type, ok=False, error=str(e))
        logger.info("Sent %s notification for meeting %s (integration %s)", integration.type, meeting.id, integration.id)
        return DeliveryResult(integration.id, integration.type, ok=True)

    def notify(self, meeting: Meeting, integrations: Iterable[Integration]) -> List[DeliveryResult]:
        targets = [
            i for i in integrations
            if i.is_enabled and i.type in KNOWN_INTEGRATION_TYPES and i.owner_id == meeting.owner_id
        ]
        if not targets:
            return []
        try:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(targets))) as pool:
                return list(pool.map(lambda i: self._deliver(meeting, i), targets))
        except Exception:
            # _deliver contains its own errors; this only covers pool failures
            logger.exception("Notification fan-out aborted for meeting %s", meeting.id)
            return []


def build_notifier(settings: Settings) -> NotificationFanout:
    return NotificationFanout(SlackClient(settings.slack_bot_token), EmailSender(settings))
