import asyncio
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader

from crmflow.config import get_config, get_settings
from crmflow.core.logging import get_logger

logger = get_logger(__name__)

# Initialize Jinja2 environment for email templates
template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)


class EmailNotConfiguredError(RuntimeError):
    """Raised when an email must be sent but no Resend API key is set."""


def _init_resend() -> None:
    """Initialize Resend API with API key."""
    settings = get_settings()
    if settings.resend_api_key:
        resend.api_key = settings.resend_api_key


def is_email_configured() -> bool:
    return bool(get_settings().resend_api_key)


async def send_automation_email(
    email: str,
    subject: str,
    message: str,
    to_name: str | None = None,
    sender_name: str | None = None,
) -> str | None:
    """
    Send an automation email (reminder, follow-up, alert).

    Args:
        email: Recipient email address
        subject: Subject line
        message: Plain-text body; line breaks are preserved in the HTML part
        to_name: Optional recipient display name
        sender_name: Display name of the sending user

    Returns:
        The Resend email id, if the API returned one

    Raises:
        EmailNotConfiguredError: If no Resend API key is configured
    """
    if not is_email_configured():
        logger.bind(email=email).warning("resend_api_key_not_set")
        raise EmailNotConfiguredError("Email service not configured")

    _init_resend()
    settings = get_settings()
    config = get_config()

    template = jinja_env.get_template("automation_email.html")
    html = template.render(
        subject=subject,
        paragraphs=message.splitlines() or [message],
        recipient_name=to_name,
        sender_name=sender_name,
    )

    recipient = f"{to_name} <{email}>" if to_name else email
    logger.bind(email=email, subject=subject).info("sending_automation_email")

    # Resend's client is synchronous; keep the event loop free while it runs
    response = await asyncio.to_thread(
        resend.Emails.send,
        {
            "from": f"{config.email.sender_name} <automations@{settings.email_domain}>",
            "to": [recipient],
            "subject": subject,
            "html": html,
            "text": message,
        },
    )

    email_id = response.get("id") if isinstance(response, dict) else None
    logger.bind(email=email, email_id=email_id).info("automation_email_sent")
    return email_id
