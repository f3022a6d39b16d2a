"""Contains all the code related to the emailing service"""

import smtplib

import logfire

from typing import Optional

from email.mime.text import MIMEText

from config.settings import Settings
from models.helpers import ContentType


class EmailService:
    """Service for handling email operations."""

    def __init__(
        self,
        smtp_server: Optional[str],
        smtp_port: int,
        username: Optional[str],
        password: Optional[str],
        from_email: str,
    ):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.from_email = from_email

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_server=settings.smtp_server,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            from_email=settings.from_email,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_server)

    def send_email(
        self,
        to: str,
        subject: str,
        content: str,
        content_type: ContentType = ContentType.HTML,
    ) -> bool:
        """Send an email.

        Args:
            to (str): Recipient email address
            subject (str): Subject of the email
            content (str): Content of the email
            content_type (ContentType, optional): ContentType of the email content. Defaults to ContentType.HTML.

        Returns:
            bool: True if the email was sent successfully, False otherwise.
        """
        if not self.is_configured:
            logfire.warning(f"SMTP is not configured, email to {to} was not sent: {subject}")
            return False

        try:
            msg = self._create_message(to, subject, content, content_type)

            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)

            logfire.info(f"Email sent successfully to {to}")
            return True

        except Exception as e:
            logfire.error(f"Failed to send email to {to}: {str(e)}")
            return False

    def _create_message(
        self, to: str, subject: str, content: str, content_type: ContentType
    ) -> MIMEText:
        msg = MIMEText(content, content_type.value)
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to
        return msg
