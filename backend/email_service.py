"""
Email service for company onboarding and account notifications.
Uses Postmark HTTP API for email delivery.
"""

import httpx
import logging
from html import escape
from typing import Optional
from config import settings

logger = logging.getLogger(__name__)


def _support_line() -> str:
    if settings.SUPPORT_EMAIL:
        return f"Questions? Contact {settings.SUPPORT_EMAIL}"
    return "This is an automated message, please do not reply to this email."


def generate_company_credentials_html(
    company_name: str,
    username: str,
    password: str,
    login_url: str
) -> str:
    """Generate HTML email with the company owner's first login credentials"""

    # Escape user-provided content to prevent HTML injection
    company_name = escape(company_name)
    username = escape(username)
    password = escape(password)

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .header {{ background: #F97316; color: white; padding: 30px; text-align: center; border-radius: 8px 8px 0 0; }}
        .header h1 {{ margin: 0; font-size: 28px; }}
        .content {{ padding: 30px; background: #f9fafb; border-radius: 0 0 8px 8px; }}
        .button {{ display: inline-block; padding: 12px 24px; background: #F97316; color: white; text-decoration: none; border-radius: 6px; margin: 10px 0; }}
        .code {{ background: #e5e7eb; padding: 12px; border-radius: 4px; font-family: 'Courier New', monospace; font-size: 16px; letter-spacing: 1px; margin: 10px 0; text-align: center; }}
        .warning-box {{ background: #fef3c7; border-left: 4px solid #f59e0b; padding: 12px; margin: 20px 0; border-radius: 4px; }}
        .footer {{ text-align: center; padding: 20px; color: #6b7280; font-size: 12px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>🏗️ Welcome to {escape(settings.APP_NAME)}</h1>
        </div>
        <div class="content">
            <p><strong>{company_name}</strong> is registered. Use the account below to sign in, add sites and warehouses, and invite your supervisors.</p>

            <p><strong>Username:</strong></p>
            <div class="code">{username}</div>
            <p><strong>Password:</strong></p>
            <div class="code">{password}</div>

            <div style="text-align: center;">
                <a href="{login_url}" class="button">Sign in</a>
            </div>

            <div class="warning-box">
                <p style="margin: 0;"><strong>⚠️ Important Security Notice:</strong></p>
                <p style="margin: 5px 0 0 0;">Change this password after your first login.</p>
            </div>
        </div>
        <div class="footer">
            <p>{escape(_support_line())}</p>
        </div>
    </div>
</body>
</html>"""


def generate_company_credentials_plain(
    company_name: str,
    username: str,
    password: str,
    login_url: str
) -> str:
    """Generate plain text email with the company owner's credentials (fallback)"""

    return f"""Welcome to {settings.APP_NAME}

{company_name} is registered. Use the account below to sign in.

Username: {username}
Password: {password}
Login URL: {login_url}

IMPORTANT SECURITY NOTICE:
Change this password after your first login.

---
{_support_line()}
"""


class EmailService:
    """Async email service using Postmark HTTP API"""

    POSTMARK_API_URL = "https://api.postmarkapp.com/email"

    def __init__(self):
        self.server_token = settings.POSTMARK_SERVER_TOKEN
        self.from_email = settings.POSTMARK_FROM_EMAIL
        self.from_name = settings.POSTMARK_FROM_NAME
        self.enabled = settings.POSTMARK_ENABLED
        self.test_mode = settings.EMAIL_TEST_MODE

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        plain_content: str,
        tag: Optional[str] = None
    ) -> bool:
        """
        Send email via Postmark HTTP API.

        Args:
            to_email: Recipient email address
            subject: Email subject line
            html_content: HTML version of email
            plain_content: Plain text fallback
            tag: Optional Postmark tag for grouping in the dashboard

        Returns:
            True if email sent successfully, False otherwise
        """

        # Test mode - log email instead of sending
        if self.test_mode:
            print(f"\n{'='*80}")
            print(f"[TEST MODE] Email would be sent to: {to_email}")
            print(f"[TEST MODE] Subject: {subject}")
            print(f"{'-'*80}")
            print(plain_content)
            print(f"{'='*80}\n")
            return True

        if not self.enabled:
            logger.info(f"Postmark disabled - email not sent to {to_email}")
            return False

        if not self.server_token:
            logger.error(f"❌ POSTMARK_SERVER_TOKEN not configured - email not sent to {to_email}")
            return False

        try:
            headers = {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-Postmark-Server-Token": self.server_token
            }

            payload = {
                "From": f"{self.from_name} <{self.from_email}>",
                "To": to_email,
                "Subject": subject,
                "HtmlBody": html_content,
                "TextBody": plain_content,
                "MessageStream": "outbound"
            }
            if tag:
                payload["Tag"] = tag

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.POSTMARK_API_URL,
                    headers=headers,
                    json=payload,
                    timeout=30.0
                )

                if response.status_code == 200:
                    logger.info(f"✅ Email sent successfully to {to_email}")
                    return True
                else:
                    logger.error(f"❌ Postmark API error for {to_email}: {response.status_code} - {response.text}")
                    return False

        except httpx.TimeoutException:
            logger.error(f"❌ Timeout sending email to {to_email}")
            return False

        except httpx.HTTPError as e:
            logger.error(f"❌ Failed to send email to {to_email}: {str(e)}")
            return False

    async def send_company_credentials_email(
        self,
        company_email: str,
        company_name: str,
        username: str,
        password: str
    ) -> bool:
        """
        Send the generated owner account to a newly registered company.

        Args:
            company_email: Company contact email
            company_name: Registered company name
            username: Generated owner username
            password: Generated owner password (plain text, sent once)

        Returns:
            True if email sent successfully, False otherwise
        """
        login_url = f"{settings.FRONTEND_URL}/login"

        html_content = generate_company_credentials_html(
            company_name=company_name,
            username=username,
            password=password,
            login_url=login_url
        )
        plain_content = generate_company_credentials_plain(
            company_name=company_name,
            username=username,
            password=password,
            login_url=login_url
        )

        logger.info(f"📝 Preparing credentials email for {company_name} <{company_email}>")

        return await self.send_email(
            to_email=company_email,
            subject=f"Your {settings.APP_NAME} account for {company_name}",
            html_content=html_content,
            plain_content=plain_content,
            tag="company-registration"
        )
