"""SMTP delivery of lending alerts to the operators' inbox."""
import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from ..config import EmailConfig

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Grove lending alert"


def parse_recipients(value: str) -> list[str]:
    """``alert_email`` may hold several comma-separated addresses."""
    return [addr.strip() for addr in value.split(",") if addr.strip()]


class EmailNotifier:
    """Send alerts by SMTP with STARTTLS. Log-channel messages are not emailed."""

    def __init__(self, config: EmailConfig, timeout_seconds: float = 30.0) -> None:
        self._config = config
        self._recipients = parse_recipients(config.alert_email)
        self._timeout = timeout_seconds

    @property
    def recipients(self) -> list[str]:
        return list(self._recipients)

    def build_message(self, message: str, subject: str = "") -> MIMEText:
        msg = MIMEText(message, "plain", "utf-8")
        msg["Subject"] = subject or DEFAULT_SUBJECT
        msg["From"] = self._config.sender_email
        msg["To"] = ", ".join(self._recipients)
        return msg

    def _deliver(self, msg: MIMEText) -> None:
        cfg = self._config
        with smtplib.SMTP(cfg.smtp_server, cfg.smtp_port, timeout=self._timeout) as smtp:
            smtp.starttls()
            smtp.login(cfg.sender_email, cfg.sender_password)
            smtp.send_message(msg)

    async def send_alert(self, message: str, subject: str = "") -> bool:
        if not self._recipients:
            logger.debug("Email alerts have no recipient, skipping")
            return False
        if not (self._config.sender_email and self._config.sender_password):
            logger.warning("SMTP sender credentials missing, alert not emailed")
            return False

        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._deliver, self.build_message(message, subject))
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Alert email to %s failed: %s", self._recipients, e)
            return False
        logger.info("Alert emailed to %d recipient(s)", len(self._recipients))
        return True

    async def send_log(self, message: str, silent: bool = True) -> bool:
        return False
