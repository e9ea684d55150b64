"""
Notification dispatch for OTP codes.

The OTP engine never sends anything itself: the auth flows hand the plaintext
code to NotificationDispatcher.deliver() via BackgroundTasks, so the HTTP
response doesn't wait on SMTP.

Delivery is best-effort. A failure is logged and dropped; the user can always
ask for a resend once the cooldown passes.

fastapi-mail notes:
  - ConnectionConfig uses MAIL_STARTTLS=True, MAIL_SSL_TLS=False for port 587
  - MAIL_SSL_TLS=True, MAIL_STARTTLS=False for port 465
"""
import logging
from typing import Optional

from fastapi_mail import FastMail, MessageSchema, ConnectionConfig, MessageType

from app.config import settings
from app.models.otp import OTPChannel, OTPPurpose

logger = logging.getLogger(__name__)

mail_config = ConnectionConfig(
    MAIL_USERNAME=settings.mail_username,
    MAIL_PASSWORD=settings.mail_password,
    MAIL_FROM=settings.mail_from,
    MAIL_PORT=settings.mail_port,
    MAIL_SERVER=settings.mail_server,
    MAIL_STARTTLS=settings.mail_port != 465,
    MAIL_SSL_TLS=settings.mail_port == 465,
    USE_CREDENTIALS=True,
    VALIDATE_CERTS=True,
)

SUBJECTS = {
    OTPPurpose.REGISTER: "Verify your email address",
    OTPPurpose.RESET_PASSWORD: "Reset your password",
    OTPPurpose.EMAIL_VERIFICATION: "Confirm your email address",
    OTPPurpose.LOGIN_VERIFICATION: "Your login verification code",
    OTPPurpose.TWO_FACTOR_AUTH: "Your two-factor sign-in code",
}


def render_otp_message(code: str, context: dict) -> str:
    """Plain-text body shared by every channel."""
    name = context.get("name")
    greeting = f"Hi {name},\n\n" if name else ""
    minutes = context.get("expiry_minutes", settings.otp_expiry_minutes)
    return (
        f"{greeting}"
        f"Your verification code is: {code}\n\n"
        f"It is valid for {minutes} minutes. Do not share it with anyone.\n"
        f"If you did not request this code, you can ignore this message."
    )


class EmailProvider:
    def __init__(self, config: ConnectionConfig = mail_config):
        self.mailer = FastMail(config)

    async def send(self, destination: str, code: str, context: dict) -> None:
        message = MessageSchema(
            subject=SUBJECTS.get(context.get("purpose"), "Your verification code"),
            recipients=[destination],
            body=render_otp_message(code, context),
            subtype=MessageType.plain,
        )
        await self.mailer.send_message(message)


class SmsProvider:
    # No SMS gateway is wired up yet; the attempt is logged without the code.
    async def send(self, destination: str, code: str, context: dict) -> None:
        logger.warning(f"SMS delivery requested for {destination} but no SMS gateway is configured")


class WhatsAppProvider:
    async def send(self, destination: str, code: str, context: dict) -> None:
        logger.warning(f"WhatsApp delivery requested for {destination} but no WhatsApp gateway is configured")


class NotificationDispatcher:
    def __init__(
        self,
        email: Optional[EmailProvider] = None,
        sms: Optional[SmsProvider] = None,
        whatsapp: Optional[WhatsAppProvider] = None,
    ):
        self.providers = {
            OTPChannel.EMAIL: email or EmailProvider(),
            OTPChannel.SMS: sms or SmsProvider(),
            OTPChannel.WHATSAPP: whatsapp or WhatsAppProvider(),
        }

    async def deliver(self, channel: OTPChannel, destination: str, code: str, context: dict) -> None:
        """
        Send `code` to `destination` over `channel`.

        Args:
            channel: delivery medium
            destination: email address or phone number
            code: the plaintext OTP (never logged)
            context: template values (purpose, name, expiry_minutes)
        """
        try:
            await self.providers[channel].send(destination, code, context)
        except Exception:
            logger.exception(f"OTP delivery over {channel.value} to {destination} failed")


_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency. Built on first use so importing this module never opens SMTP."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
