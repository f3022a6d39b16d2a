"""Service for handling email verification.

A verification token is a random 64 character hex string stored in the session
store under `email_verification:<token>` with the owning user id as value. It
expires after `token_expiry` and is deleted when redeemed.
"""

import secrets

import logfire

from datetime import timedelta

from typing import Optional

from config.settings import Settings
from services.email import EmailService
from services.session_store import SessionStore
from services.template import TemplateService


TOKEN_BYTES = 32


class EmailVerificationService:
    """Issues, redeems and mails email verification tokens."""

    def __init__(
        self,
        store: SessionStore,
        email_service: EmailService,
        template_service: TemplateService,
        site_url: str,
        token_expiry: timedelta = timedelta(hours=24),
        resend_cooldown: timedelta = timedelta(seconds=60),
    ):
        self.store = store
        self.email_service = email_service
        self.template_service = template_service
        self.site_url = site_url.rstrip("/")
        self.token_expiry = token_expiry
        self.resend_cooldown = resend_cooldown

    @classmethod
    def from_settings(cls, settings: Settings, store: SessionStore) -> "EmailVerificationService":
        return cls(
            store=store,
            email_service=EmailService.from_settings(settings),
            template_service=TemplateService(),
            site_url=settings.site_url,
            token_expiry=timedelta(seconds=settings.email_verification_expiry),
            resend_cooldown=timedelta(seconds=settings.verification_resend_cooldown),
        )

    async def issue_token(self, user_id: str) -> str:
        """Create and store a new verification token for `user_id`."""
        token = secrets.token_hex(TOKEN_BYTES)
        await self.store.set_verification_token(token, user_id, int(self.token_expiry.total_seconds()))
        logfire.info(f"Issued email verification token for user {user_id}")
        return token

    async def consume_token(self, token: str) -> Optional[str]:
        """Redeem `token`, returning the user id it was issued for, or None if unknown or expired."""
        return await self.store.consume_verification_token(token)

    async def acquire_resend_cooldown(self, user_id: str) -> bool:
        return await self.store.acquire_resend_cooldown(user_id, int(self.resend_cooldown.total_seconds()))

    def verification_url(self, token: str) -> str:
        return f"{self.site_url}/verify-email?token={token}"

    def send_verification_email(self, email: str, username: str, token: str) -> bool:
        """Send the verification link to `email`.

        Blocking (SMTP), meant to run as a background task after the response.

        Returns:
            bool: True if the email was sent successfully, False otherwise.
        """
        with logfire.span(f"Sending verification email to: {email}"):
            html_content = self.template_service.render_verification_email(
                username=username,
                verification_url=self.verification_url(token),
                expires_in_hours=int(self.token_expiry.total_seconds() // 3600),
            )

            return self.email_service.send_email(
                to=email,
                subject="Verify your Gotchu email address",
                content=html_content,
            )
