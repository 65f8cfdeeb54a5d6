import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional, Sequence

from app.config.settings import settings
from app.utils.logging import get_logger

logger = get_logger()


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


class MailTransport(ABC):
    """Outbound email channel used by the dispatcher"""

    from_address: str = ""

    @abstractmethod
    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> SendResult:
        """
        Deliver one message. Blocking; the dispatcher runs it in a worker
        thread under its own timeout.

        Delivery problems are reported through SendResult rather than raised.
        """

    @abstractmethod
    def verify_connection(self) -> bool:
        """Check that the channel is reachable and accepts our credentials"""


class SmtpMailTransport(MailTransport):
    """SMTP delivery with optional STARTTLS and login"""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.from_address = from_address
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "SmtpMailTransport":
        return cls(
            host=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            from_address=settings.SMTP_FROM_ADDRESS,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            use_tls=settings.SMTP_USE_TLS,
            timeout=settings.NOTIFICATION_SEND_TIMEOUT_SECONDS,
        )

    def _connect(self) -> smtplib.SMTP:
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.use_tls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password)
        except Exception:
            server.close()
            raise
        return server

    def _build_message(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        html_body: Optional[str],
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body)
        if html_body:
            message.add_alternative(html_body, subtype="html")
        return message

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        html_body: Optional[str] = None,
    ) -> SendResult:
        if not recipients:
            return SendResult(success=False, error="No recipients configured")

        message = self._build_message(recipients, subject, body, html_body)

        try:
            with self._connect() as server:
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.bind(smtp_host=self.host).warning(f"SMTP send failed: {e}")
            return SendResult(success=False, error=f"{type(e).__name__}: {e}")

        return SendResult(success=True)

    def verify_connection(self) -> bool:
        """Open and close a session to check host, TLS and credentials"""
        try:
            with self._connect() as server:
                server.noop()
        except (smtplib.SMTPException, OSError) as e:
            logger.bind(smtp_host=self.host).error(
                f"SMTP connection check failed: {e}"
            )
            return False

        logger.bind(smtp_host=self.host).info("SMTP connection verified")
        return True
