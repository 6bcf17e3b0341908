import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from .config import EMAIL_HOST, EMAIL_PASSWORD, EMAIL_PORT, EMAIL_SENDER, EMAIL_SENDER_NAME, EMAIL_USER

logger = logging.getLogger(__name__)

def _from_header(sender_name: str | None) -> str:
    display_name = (sender_name or EMAIL_SENDER_NAME or "").strip()
    return formataddr((display_name, EMAIL_SENDER)) if display_name else EMAIL_SENDER

def build_message(to: str, subject: str, body: str, html_body: str | None = None,
                  sender_name: str | None = None, reply_to: str | None = None) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _from_header(sender_name)
    if reply_to:
        msg["Reply-To"] = reply_to
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body or "")
    if html_body:
        msg.add_alternative(html_body, subtype="html")
    return msg

def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
    sender_name: str | None = None,
    reply_to: str | None = None,
):
    """Send a notification email. SMTP errors propagate so the outbox can retry."""
    msg = build_message(to, subject, body, html_body, sender_name, reply_to)
    if not (EMAIL_USER and EMAIL_PASSWORD):
        logger.info("email (stub) from=%s to=%s subject=%r\n%s", msg["From"], to, subject, body)
        return
    with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT) as smtp:
        smtp.starttls()
        smtp.login(EMAIL_USER, EMAIL_PASSWORD)
        smtp.send_message(msg)
    logger.info("email sent to %s: %s", to, subject)
