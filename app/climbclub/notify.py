"""
Best-effort member notifications over SMTP.

Delivery problems are logged and reported as ``False``; they never propagate
to the membership operation that triggered the message.
"""
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notifier:
    smtp_server: str
    smtp_port: str
    use_tls: bool
    username: str
    password: str
    email_from: str
    timeout_seconds: int = 15

    @property
    def configured(self) -> bool:
        return bool(self.smtp_server and self.email_from)

    def _build_message(self, to: str, subject: str, text: str, html: str | None) -> MIMEText | MIMEMultipart:
        if html:
            msg: MIMEText | MIMEMultipart = MIMEMultipart("alternative")
            msg.attach(MIMEText(text, "plain"))
            msg.attach(MIMEText(html, "html"))
        else:
            msg = MIMEText(text, "plain")
        msg["Subject"] = subject
        msg["From"] = self.email_from
        msg["To"] = to
        return msg

    def send(self, to: str, subject: str, text: str, html: str | None = None) -> bool:
        if not self.configured:
            logger.warning("No email provider configured. Skipping email send to: %s", to)
            return False

        msg = self._build_message(to, subject, text, html)
        try:
            port = int(self.smtp_port) if self.smtp_port else 0
            with smtplib.SMTP(self.smtp_server, port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.email_from, [to], msg.as_string())
        except (smtplib.SMTPException, OSError, ValueError):
            logger.exception("Email send failed (to=%s subject=%s)", to, subject)
            return False
        logger.info("Email sent (to=%s subject=%s)", to, subject)
        return True


def notifier_from_config(config: dict) -> Notifier:
    return Notifier(
        smtp_server=(config.get("SMTP_SERVER") or "").strip(),
        smtp_port=str(config.get("SMTP_PORT") or "").strip(),
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        username=(config.get("SMTP_USERNAME") or "").strip(),
        password=(config.get("SMTP_PASSWORD") or "").strip(),
        email_from=(config.get("EMAIL_FROM") or "").strip(),
    )


def notify_member(to: str, subject: str, text: str, html: str | None = None) -> bool:
    """Send through the app's notifier (``app.extensions["notifier"]``)."""
    from flask import current_app, has_app_context

    if not has_app_context():
        logger.warning("notify_member called outside an app context; skipping email to %s", to)
        return False
    notifier: Notifier | None = current_app.extensions.get("notifier")
    if notifier is None:
        notifier = notifier_from_config(current_app.config)
    return notifier.send(to, subject, text, html)
