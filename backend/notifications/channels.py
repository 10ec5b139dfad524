"""Notification channel implementations.

Each channel handles delivery for one transport used by workflow steps:
``email`` steps go through EmailChannel (SMTP), ``notification`` steps
through InAppChannel (rows in the ``notifications`` table).
"""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from string import Template
from typing import Any, Mapping, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.constants import NotificationPriority
from core.exceptions import TransientError, ValidationError
from db.models.notification import Notification
from workflow.ports import EmailSender, NotificationCreator

logger = structlog.get_logger(__name__)


# ─── Email Channel ─────────────────────────────────────────────

class EmailChannel(EmailSender):
    """Send emails via SMTP.

    Config (constructor):
        smtp_host, smtp_port, smtp_user, smtp_password,
        from_address, use_tls

    Step config (``send``):
        to: Recipient address, or a list of addresses (required)
        subject: Subject line
        body / message: Plain-text body, ``$name`` placeholders filled
            from ``templateData``
        template: Template name, recorded in the message headers
        templateData: Values for the body placeholders
    """

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}

    @classmethod
    def from_settings(cls, settings) -> "EmailChannel":
        return cls({
            "smtp_host": settings.SMTP_HOST,
            "smtp_port": settings.SMTP_PORT,
            "smtp_user": settings.SMTP_USER,
            "smtp_password": settings.SMTP_PASSWORD,
            "from_address": settings.EMAIL_FROM_ADDRESS,
            "use_tls": settings.SMTP_USE_TLS,
        })

    def build_message(self, config: Mapping[str, Any]) -> EmailMessage:
        recipients = config.get("to")
        if isinstance(recipients, (list, tuple)):
            recipients = ", ".join(str(r) for r in recipients if r)
        if not recipients:
            raise ValidationError("Email needs at least one recipient")

        subject = str(config.get("subject") or "")
        body = str(config.get("body") or config.get("message") or "")
        template_data = config.get("templateData") or {}
        if isinstance(template_data, Mapping) and template_data:
            body = Template(body).safe_substitute({k: str(v) for k, v in template_data.items()})

        msg = EmailMessage()
        try:
            msg["Subject"] = subject
            msg["From"] = self.config.get("from_address", "automation@localhost")
            msg["To"] = recipients
            if config.get("template"):
                msg["X-Workflow-Template"] = str(config["template"])
        except ValueError as e:
            # CR/LF in an interpolated header value
            raise ValidationError(f"Invalid email header: {e}")
        msg["Message-ID"] = make_msgid(domain="automation.local")

        msg.set_content(body)
        msg.add_alternative(
            f"""
            <div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">
                <h2 style="color: #333;">{escape(subject)}</h2>
                <div style="color: #555; line-height: 1.6;">
                    {escape(body).replace(chr(10), '<br>')}
                </div>
            </div>
            """,
            subtype="html",
        )
        return msg

    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        """Send one email; SMTP runs in the default executor."""
        msg = self.build_message(config)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg)
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused) as e:
            raise ValidationError(f"Email rejected by SMTP server: {e}")
        except smtplib.SMTPAuthenticationError as e:
            raise ValidationError(f"SMTP authentication failed: {e.smtp_code}")
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Email send failed", to=msg["To"], error=str(e))
            raise TransientError(f"Email send failed: {e}")

        logger.info("Email sent", to=msg["To"], message_id=msg["Message-ID"])
        return {"sent": True, "message_id": msg["Message-ID"]}

    def _send_smtp(self, msg: EmailMessage) -> None:
        """Synchronous SMTP send."""
        host = self.config.get("smtp_host", "localhost")
        port = self.config.get("smtp_port", 587)
        with smtplib.SMTP(host, port, timeout=30) as server:
            if self.config.get("use_tls", True):
                server.starttls()
            user = self.config.get("smtp_user")
            password = self.config.get("smtp_password")
            if user and password:
                server.login(user, password)
            server.send_message(msg)


# ─── In-app Channel ────────────────────────────────────────────

class InAppChannel(NotificationCreator):
    """Persist in-app notifications for a user.

    Step config (``send``):
        user_id / userId: Recipient user (optional, broadcast when missing)
        title, message: Notification text (one of them required)
        priority: low, normal, high, critical
        data: Extra JSON shown with the notification
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def send(self, config: Mapping[str, Any]) -> dict[str, Any]:
        title = str(config.get("title") or "")
        message = str(config.get("message") or "")
        if not title and not message:
            raise ValidationError("Notification needs a title or message")

        priority = str(config.get("priority") or NotificationPriority.NORMAL.value)
        try:
            priority = NotificationPriority(priority).value
        except ValueError:
            raise ValidationError(f"Unknown notification priority: {priority}")

        data = config.get("data")
        notification = Notification(
            user_id=config.get("user_id") or config.get("userId"),
            title=title,
            message=message,
            priority=priority,
            data=dict(data) if isinstance(data, Mapping) else None,
        )
        try:
            async with self._session_factory() as session:
                session.add(notification)
                await session.flush()
                notification_id = notification.id
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning("Notification not stored", error=str(e))
            raise TransientError(f"Failed to store notification: {e}")

        logger.info("Notification created", notification_id=notification_id, user_id=notification.user_id)
        return {"sent": True, "notification_id": notification_id}
