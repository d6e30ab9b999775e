import asyncio

from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType

from authcore.core.config import settings
from authcore.core.logging import get_logger

logger = get_logger(__name__)


class EmailManager:
    """Outbound mail. Delivery failures are logged and reported as ``False``, never raised."""

    def __init__(self, fast_mail: FastMail = None, timeout: float = None):
        self.timeout = timeout if timeout is not None else settings.MAIL_TIMEOUT_SECONDS
        if fast_mail is not None:
            self.fm = fast_mail
            return

        # Check if email is configured
        if not settings.MAIL_USERNAME or not settings.MAIL_FROM:
            self.fm = None
            logger.warning("email_disabled | reason=not_configured")
            return

        try:
            conf = ConnectionConfig(
                MAIL_USERNAME=settings.MAIL_USERNAME,
                MAIL_PASSWORD=settings.MAIL_PASSWORD,
                MAIL_FROM=settings.MAIL_FROM,
                MAIL_PORT=settings.MAIL_PORT,
                MAIL_SERVER=settings.MAIL_SERVER,
                MAIL_FROM_NAME=settings.MAIL_FROM_NAME,
                MAIL_STARTTLS=settings.MAIL_STARTTLS,
                MAIL_SSL_TLS=settings.MAIL_SSL_TLS,
                USE_CREDENTIALS=settings.USE_CREDENTIALS,
                VALIDATE_CERTS=settings.VALIDATE_CERTS,
                TIMEOUT=int(self.timeout),
            )
            self.fm = FastMail(conf)
        except Exception:
            self.fm = None
            logger.exception("email_disabled | reason=configuration_error")

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        """Send one HTML message, bounded by the configured timeout."""
        if not self.fm:
            logger.info(f"email_skipped | reason=not_configured subject={subject!r}")
            return False

        message = MessageSchema(
            subject=subject,
            recipients=[to],
            body=html_body,
            subtype=MessageType.html,
        )
        try:
            await asyncio.wait_for(self.fm.send_message(message), timeout=self.timeout)
            logger.info(f"email_sent | subject={subject!r}")
            return True
        except asyncio.TimeoutError:
            logger.error(f"email_failed | reason=timeout subject={subject!r} timeout={self.timeout}")
            return False
        except Exception:
            logger.exception(f"email_failed | reason=transport_error subject={subject!r}")
            return False

    async def send_password_reset_code(self, email: str, reset_code: str, user_name: str = "User") -> bool:
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <p>Hello {user_name},</p>
                <p>Use the code below to reset your password:</p>
                <h1 style="letter-spacing: 5px;">{reset_code}</h1>
                <p>This code will expire in {settings.OTP_EXPIRE_MINUTES} minutes.</p>
                <p>If you didn't request this, please ignore this email.</p>
            </body>
        </html>
        """
        return await self.send(email, "Forgot Password", html_content)

    async def send_email_verification_code(self, email: str, code: str, user_name: str = "User") -> bool:
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <p>Hello {user_name},</p>
                <p>Your email verification code is:</p>
                <h1 style="letter-spacing: 5px;">{code}</h1>
                <p>This code will expire in {settings.OTP_EXPIRE_MINUTES} minutes.</p>
            </body>
        </html>
        """
        return await self.send(email, "Verify Your Email Address", html_content)


# Global email manager instance
email_manager = EmailManager()
