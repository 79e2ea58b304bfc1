# foodrelay/services/notifier.py
import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Iterable

from foodrelay.core.config import Settings
from foodrelay.core.errors import DispatchError

log = logging.getLogger(__name__)


class SmtpMailer:
    """Plain-text email over SMTP; the blocking client runs in a worker thread."""

    def __init__(self, cfg: Settings):
        self.cfg = cfg

    def _build(self, to: str, subject: str, body: str) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg["From"] = self.cfg.smtp_sender or self.cfg.smtp_username
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))
        return msg

    def _send_blocking(self, to: str, subject: str, body: str) -> None:
        msg = self._build(to, subject, body)
        with smtplib.SMTP(self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.cfg.smtp_timeout) as server:
            if self.cfg.smtp_starttls:
                server.starttls()
            if self.cfg.smtp_username:
                server.login(self.cfg.smtp_username, self.cfg.smtp_password)
            server.send_message(msg)

    async def send(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise DispatchError("Email recipient is missing")
        try:
            await asyncio.to_thread(self._send_blocking, to, subject, body)
        except (smtplib.SMTPException, OSError) as ex:
            log.warning("email to %s failed: %s", to, ex)
            raise DispatchError("Email sending failed")
        log.info("email sent to %s (%s)", to, subject)


async def send_many(mailer, recipients: Iterable[str], subject: str, body: str) -> Dict[str, bool]:
    """
    Best-effort fan-out. A failed recipient is logged and reported as False,
    never raised.
    """
    recipients = [r for r in dict.fromkeys(recipients) if r]

    async def one(to: str) -> bool:
        try:
            await mailer.send(to, subject, body)
            return True
        except DispatchError as ex:
            log.warning("notification to %s dropped: %s", to, ex.message)
            return False

    results = await asyncio.gather(*(one(r) for r in recipients))
    return dict(zip(recipients, results))
