"""
MJML Email Templates
Booking notifications sent to referrers, specialists and invited members
"""

from html import escape
from typing import Optional

from .config import FRONTEND_URL

# Portal theme colors - Navy/Sky color scheme
THEME = {
    "primary": "#0369a1",
    "primary_dark": "#075985",
    "primary_light": "#e0f2fe",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#059669",
    "warning": "#f59e0b",
    "danger": "#dc2626",
}

BRAND_NAME = "Medibytes"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    is_user_email: bool = True,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    footer_notice = ""
    if is_user_email:
        footer_notice = f"""
        <mj-text align="center" font-size="12px" color="#94a3b8" padding="12px 0 0 0">
          You're receiving this because you have an account with {BRAND_NAME}.
          This message may contain confidential medical-legal information.
        </mj-text>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="32px 20px">
          <mj-column>
            <mj-text font-size="22px" font-weight="700" color="{THEME['primary']}" padding="0">
              {BRAND_NAME}
            </mj-text>
          </mj-column>
        </mj-section>

        <mj-section background-color="#ffffff" padding="0 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              © {BRAND_NAME}. All rights reserved.
            </mj-text>
            {footer_notice}
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def _appointment_block(date_label: str, time_label: str, specialist_name: str) -> str:
    return f"""
    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="12px 0 0 0">
      👩‍⚕️ {escape(specialist_name)}
    </mj-text>
    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0">
      📅 {escape(date_label)}
    </mj-text>
    <mj-text align="center" font-size="16px" color="{THEME['text_primary']}" padding="0 0 20px 0">
      ⏰ {escape(time_label)}
    </mj-text>
    """


def booking_confirmation_template(
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    date_label: str,
    time_label: str,
    booking_id: str,
    appointment_type: str = "in-person",
) -> str:
    """Booking confirmation sent to the referrer"""
    content = f"""
    <mj-text>
      Hi {escape(referrer_name)},
    </mj-text>

    <mj-text>
      The {escape(appointment_type)} assessment for <strong>{escape(examinee_name)}</strong> has been booked.
    </mj-text>

    <mj-text align="center" font-size="18px" font-weight="600" color="{THEME['success']}" padding="20px 0 0 0">
      ✓ Appointment Confirmed
    </mj-text>
    {_appointment_block(date_label, time_label, specialist_name)}
    <mj-text color="{THEME['text_muted']}">
      Please upload the consent form and document brief before the appointment.
    </mj-text>
    """

    return get_base_template(
        title="Booking Confirmed",
        preview_text=f"Appointment with {specialist_name} on {date_label}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}",
        cta_label="View Booking",
    )


def booking_rescheduled_template(
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    date_label: str,
    time_label: str,
    booking_id: str,
) -> str:
    """Reschedule notice sent to the referrer"""
    content = f"""
    <mj-text>
      Hi {escape(referrer_name)},
    </mj-text>

    <mj-text>
      The appointment for <strong>{escape(examinee_name)}</strong> has been moved to a new time.
    </mj-text>
    {_appointment_block(date_label, time_label, specialist_name)}
    """

    return get_base_template(
        title="Appointment Rescheduled",
        preview_text=f"New time: {date_label} {time_label}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}",
        cta_label="View Booking",
    )


def booking_cancelled_template(
    referrer_name: str,
    examinee_name: str,
    specialist_name: str,
    date_label: str,
    no_show: bool = False,
) -> str:
    """Cancellation (or no-show) notice sent to the referrer"""
    if no_show:
        title = "Appointment Marked as No-Show"
        message = f"<strong>{escape(examinee_name)}</strong> did not attend the appointment with {escape(specialist_name)} on {escape(date_label)}."
    else:
        title = "Appointment Cancelled"
        message = f"The appointment for <strong>{escape(examinee_name)}</strong> with {escape(specialist_name)} on {escape(date_label)} has been cancelled."

    content = f"""
    <mj-text>
      Hi {escape(referrer_name)},
    </mj-text>

    <mj-text>
      {message}
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      Contact us if you would like to book a new appointment.
    </mj-text>
    """

    return get_base_template(
        title=title,
        preview_text=title,
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings",
        cta_label="View Bookings",
    )


def document_uploaded_template(
    recipient_name: str,
    uploader_name: str,
    examinee_name: str,
    category_label: str,
    booking_id: str,
) -> str:
    """New document notification"""
    content = f"""
    <mj-text>
      Hi {escape(recipient_name)},
    </mj-text>

    <mj-text>
      {escape(uploader_name)} uploaded a new <strong>{escape(category_label)}</strong>
      for the booking of {escape(examinee_name)}.
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      For privacy the document is not attached. Sign in to the portal to view it.
    </mj-text>
    """

    return get_base_template(
        title="New Document Uploaded",
        preview_text=f"New {category_label} available",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}",
        cta_label="View Documents",
    )


def organization_invitation_template(
    organization_name: str,
    inviter_name: str,
    role: str,
    invitation_url: str,
) -> str:
    """Invitation to join an organization"""
    content = f"""
    <mj-text>
      {escape(inviter_name)} has invited you to join <strong>{escape(organization_name)}</strong>
      on {BRAND_NAME} as a {escape(role.replace('_', ' '))}.
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      If you weren't expecting this invitation you can ignore this email.
    </mj-text>
    """

    return get_base_template(
        title=f"Join {escape(organization_name)}",
        preview_text=f"You've been invited to {organization_name}",
        content_sections=content,
        cta_url=invitation_url,
        cta_label="Accept Invitation",
        is_user_email=False,
    )
