"""
Email delivery for notifications.

Delivery runs after the triggering request has committed; a failure here
is reported back to the caller as (False, error) and never raised.
"""

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib

from ..core.config import Settings
from ..models import User


logger = logging.getLogger(__name__)


DEFAULT_SUBJECT = "Grievance Portal Notification"


@dataclass
class EmailConfig:
    """Email delivery configuration."""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    use_tls: bool = False
    timeout_seconds: float = 15.0
    portal_url: str | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailConfig":
        return cls(
            smtp_host=settings.smtp_host or "",
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user or "",
            smtp_password=settings.smtp_pass or "",
            from_email=settings.smtp_from or settings.smtp_user or "",
            use_tls=settings.smtp_use_tls,
            timeout_seconds=settings.smtp_timeout_seconds,
            portal_url=settings.portal_url,
        )


@dataclass
class OutgoingEmail:
    """A notification rendered for one recipient."""
    to: str
    subject: str
    text: str
    html: str


def render_notification_email(
    message: str,
    display_name: str | None = None,
    link: str | None = None,
    subject: str = DEFAULT_SUBJECT,
    to: str = "",
) -> OutgoingEmail:
    """Build the plain text and HTML bodies mirroring an in-app notification."""
    greeting_name = display_name or "there"
    lines = [
        f"Hello {greeting_name},",
        "",
        message,
        "",
        "Please sign in to the Grievance Portal for more details.",
    ]
    if link:
        lines.extend(["", f"Direct link: {link}"])

    link_html = ""
    if link:
        link_html = (
            f'<p><a href="{html.escape(link, quote=True)}" style="color:#a855f7;">'
            "View grievance details</a></p>"
        )

    body_html = (
        f"<p>Hello {html.escape(greeting_name)},</p>\n"
        f"<p>{html.escape(message)}</p>\n"
        "<p>Please sign in to the Grievance Portal for more details.</p>\n"
        f"{link_html}"
    )

    return OutgoingEmail(to=to, subject=subject, text="\n".join(lines), html=body_html)


class NotificationChannel(ABC):
    """Abstract base for out-of-app notification delivery."""

    @abstractmethod
    async def send(
        self,
        recipient: User,
        message: str,
        link: str | None = None,
    ) -> tuple[bool, str | None]:
        """
        Deliver one notification.

        Returns:
            (success, error_message)
        """
        pass


class EmailChannel(NotificationChannel):
    """SMTP email channel."""

    def __init__(self, config: EmailConfig):
        self._config = config

    @property
    def config(self) -> EmailConfig:
        return self._config

    def case_link(self, grievance_id) -> str | None:
        if not self._config.portal_url or not grievance_id:
            return None
        return f"{self._config.portal_url.rstrip('/')}/dashboard/grievances/{grievance_id}"

    async def send(
        self,
        recipient: User,
        message: str,
        link: str | None = None,
    ) -> tuple[bool, str | None]:
        """Send an email notification."""
        outgoing = render_notification_email(
            message=message,
            display_name=recipient.display_name,
            link=link,
            to=recipient.email or "",
        )

        email = EmailMessage()
        email["From"] = self._config.from_email
        email["To"] = outgoing.to
        email["Subject"] = outgoing.subject
        email.set_content(outgoing.text)
        email.add_alternative(outgoing.html, subtype="html")

        try:
            await aiosmtplib.send(
                email,
                hostname=self._config.smtp_host,
                port=self._config.smtp_port,
                username=self._config.smtp_user,
                password=self._config.smtp_password,
                use_tls=self._config.use_tls,
                timeout=self._config.timeout_seconds,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            error_msg = f"Failed to send email: {e}"
            logger.error(f"{error_msg} (recipient={recipient.id})")
            return False, error_msg

        logger.info(f"[EMAIL] Sent notification to user {recipient.id}")
        return True, None
