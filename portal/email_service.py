"""
Email Service using Resend
Provides email functionality using MJML templates for responsive design
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from . import config
from .email_templates import (
    booking_cancelled_template,
    booking_confirmation_template,
    booking_rescheduled_template,
    document_uploaded_template,
    organization_invitation_template,
)

logger = logging.getLogger(__name__)

CATEGORY_LABELS = {
    "consent_form": "Consent Form",
    "document_brief": "Document Brief",
    "dictation": "Dictation",
    "draft_report": "Draft Report",
    "final_report": "Final Report",
}


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # Newer releases return an object with .html/.errors, older ones a dict
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        html = getattr(result, "html", None)
        if html is not None:
            if getattr(result, "errors", None):
                logger.warning(f"MJML compilation warnings: {result.errors}")
            return html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise RuntimeError(f"Failed to compile MJML template: {str(e)}") from e


def format_appointment_time(value: Optional[datetime]) -> tuple[str, str]:
    if value is None:
        return "To be confirmed", ""
    return value.strftime("%A, %d %B %Y"), value.strftime("%I:%M %p UTC")


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not config.RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise RuntimeError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to
    resend.api_key = config.RESEND_API_KEY

    try:
        logger.info(f"📧 Sending email via Resend: {subject}")
        response = await asyncio.to_thread(
            resend.Emails.send,
            {
                "from": from_address or config.EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            },
        )
        logger.info("✅ Email sent successfully via Resend")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error: {e}")
        raise RuntimeError(f"Failed to send email: {str(e)}") from e


# ============================================
# Booking notifications
# ============================================


async def send_booking_confirmation(
    to: str,
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    appointment_time: Optional[datetime],
    booking_id: str,
    appointment_type: str = "in-person",
) -> dict:
    date_label, time_label = format_appointment_time(appointment_time)
    return await send_email(
        to=to,
        subject=f"Booking confirmed with {specialist_name}",
        mjml_content=booking_confirmation_template(
            referrer_name, examinee_name, specialist_name, date_label, time_label, booking_id, appointment_type
        ),
    )


async def send_booking_rescheduled(
    to: str,
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    appointment_time: Optional[datetime],
    booking_id: str,
) -> dict:
    date_label, time_label = format_appointment_time(appointment_time)
    return await send_email(
        to=to,
        subject="Appointment rescheduled",
        mjml_content=booking_rescheduled_template(
            referrer_name, examinee_name, specialist_name, date_label, time_label, booking_id
        ),
    )


async def send_booking_cancelled(
    to: str,
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    appointment_time: Optional[datetime],
    no_show: bool = False,
) -> dict:
    date_label, _ = format_appointment_time(appointment_time)
    return await send_email(
        to=to,
        subject="Appointment marked as no-show" if no_show else "Appointment cancelled",
        mjml_content=booking_cancelled_template(
            referrer_name, examinee_name, specialist_name, date_label, no_show
        ),
    )


async def send_document_uploaded(
    to: str,
    recipient_name: str,
    uploader_name: str,
    examinee_name: str,
    category: str,
    booking_id: str,
) -> dict:
    label = CATEGORY_LABELS.get(category, category)
    return await send_email(
        to=to,
        subject=f"New {label} uploaded",
        mjml_content=document_uploaded_template(
            recipient_name, uploader_name, examinee_name, label, booking_id
        ),
    )


async def send_organization_invitation(
    to: str,
    organization_name: str,
    inviter_name: str,
    role: str,
    invitation_url: str,
) -> dict:
    return await send_email(
        to=to,
        subject=f"You've been invited to join {organization_name}",
        mjml_content=organization_invitation_template(
            organization_name, inviter_name, role, invitation_url
        ),
    )
