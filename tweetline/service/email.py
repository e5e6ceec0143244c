from __future__ import annotations

import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from tweetline.logging import get_logger

logger = get_logger(__name__)

_EMAIL_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #14171a; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 40px 20px; }}
        .button {{ display: inline-block; background: #1d9bf0; color: white; padding: 12px 24px; border-radius: 9999px; text-decoration: none; font-weight: 600; }}
        .footer {{ margin-top: 40px; font-size: 12px; color: #536471; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{heading}</h1>
        <p>{intro}</p>
        <p style="margin: 30px 0;">
            <a href="{url}" class="button">{action}</a>
        </p>
        <p>{expiry}</p>
        <div class="footer">
            <p>{from_name}</p>
            <p>If the button doesn't work, copy and paste this URL: {url}</p>
        </div>
    </div>
</body>
</html>
"""


class EmailService:
    """Transactional mail for account verification and password resets.

    When no SMTP host is configured the message is logged instead of sent,
    which is what local development and the test suite rely on. Delivery
    failures are logged and reported as ``False``; they never raise.
    """

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Tweetline",
        base_url: Optional[str] = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.base_url = (base_url or "http://localhost:8000").rstrip("/")

    @classmethod
    def from_settings(cls, settings) -> "EmailService":
        return cls(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            smtp_use_tls=settings.smtp_use_tls,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
            base_url=settings.app_base_url,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _redact_email(self, email: str) -> str:
        if "@" not in email:
            return "redacted"
        local, domain = email.split("@", 1)
        return f"{local[:2]}***@{domain}"

    def _send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        """Send an email via SMTP.

        Returns True if sent successfully, False otherwise.
        """
        if not self.is_configured:
            # Dev mode: log the email instead of sending
            logger.info(
                "email_dev_mode",
                to=self._redact_email(to_email),
                subject=subject,
            )
            return True

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = subject
            msg["From"] = f"{self.from_name} <{self.from_email}>"
            msg["To"] = to_email
            if text_body:
                msg.attach(MIMEText(text_body, "plain"))
            msg.attach(MIMEText(html_body, "html"))

            context = ssl.create_default_context()
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=30
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())

            logger.info("email_sent", to=self._redact_email(to_email), subject=subject)
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "email_auth_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error=str(e),
            )
            return False
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(
                "email_recipient_refused",
                to=self._redact_email(to_email),
                error=str(e),
            )
            return False
        except smtplib.SMTPException as e:
            logger.error(
                "email_smtp_error",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False
        except (ssl.SSLError, OSError) as e:
            logger.error(
                "email_connection_failed",
                to=self._redact_email(to_email),
                host=self.smtp_host,
                port=self.smtp_port,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

    def send_email_verification(self, to_email: str, token: str) -> bool:
        """Send the email verification link."""
        verify_url = f"{self.base_url}/users/verify-email?email_verify_token={token}"
        subject = f"Verify your {self.from_name} email"
        html_body = _EMAIL_TEMPLATE.format(
            heading="Verify your email",
            intro="Thanks for signing up! Please verify your email address by clicking the button below:",
            url=verify_url,
            action="Verify Email",
            expiry="This link will expire in 7 days.",
            from_name=self.from_name,
        )
        text_body = f"""Verify your {self.from_name} email

Thanks for signing up! Please verify your email address by visiting the link below:

{verify_url}

This link will expire in 7 days.
"""
        return self._send_email(to_email, subject, html_body, text_body)

    def send_password_reset(self, to_email: str, token: str) -> bool:
        """Send the password reset link."""
        reset_url = f"{self.base_url}/users/verify-forgot-password?forgot_password_token={token}"
        subject = f"Reset your {self.from_name} password"
        html_body = _EMAIL_TEMPLATE.format(
            heading="Reset your password",
            intro="We received a request to reset your password. Click the button below to choose a new password:",
            url=reset_url,
            action="Reset Password",
            expiry="This link will expire in 1 hour. If you didn't request this, you can safely ignore this email.",
            from_name=self.from_name,
        )
        text_body = f"""Reset your {self.from_name} password

We received a request to reset your password. Visit the link below to choose a new password:

{reset_url}

This link will expire in 1 hour.

If you didn't request this, you can safely ignore this email.
"""
        return self._send_email(to_email, subject, html_body, text_body)
