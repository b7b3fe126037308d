import html
import logging
from typing import Protocol

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from starlette.concurrency import run_in_threadpool

from sealshare.core.config import settings

logger = logging.getLogger("sealshare")


class ShareNotifier(Protocol):
    async def notify(
        self, recipient_email: str, download_url: str, expiry_hours: int, sender_email: str
    ) -> bool:
        ...


def render_share_email(download_url: str, expiry_hours: int, sender_email: str) -> tuple[str, str]:
    subject = "Secure file shared with you"
    sender = html.escape(sender_email)
    url = html.escape(download_url, quote=True)
    body = (
        f"<p>User <b>{sender}</b> has shared a secure file with you.</p>"
        f'<p><a href="{url}">Click here to view file details and download</a></p>'
        f"<p>This link expires in {expiry_hours} hours.</p>"
    )
    return subject, body


async def send_email(to_email: str, subject: str, body: str) -> bool:
    """
    Send an email through the SendGrid API. Returns False instead of raising.
    """
    if not settings.SENDGRID_API_KEY or not settings.EMAIL_FROM:
        logger.warning("SendGrid is not configured; email to %s not sent", to_email)
        return False
    try:
        message = Mail(
            from_email=(settings.EMAIL_FROM, settings.EMAIL_FROM_NAME),
            to_emails=to_email,
            subject=subject,
            html_content=body,
        )

        sg = SendGridAPIClient(settings.SENDGRID_API_KEY)
        response = await run_in_threadpool(sg.send, message)

        # 202 Accepted
        if response.status_code == 202:
            return True
        logger.error("SendGrid API error: %s, %s", response.status_code, response.body)
        return False

    except Exception as e:
        logger.error("Failed to send email through SendGrid to %s: %s", to_email, e)
        return False


class SendGridNotifier:
    async def notify(
        self, recipient_email: str, download_url: str, expiry_hours: int, sender_email: str
    ) -> bool:
        subject, body = render_share_email(download_url, expiry_hours, sender_email)
        return await send_email(recipient_email, subject, body)
