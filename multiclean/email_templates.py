"""
MJML Email Templates
Emails sent for multi-cleaner edge case decisions and cancellations
"""

from typing import Optional

from .config import FRONTEND_URL

THEME = {
    "primary": "#14b8a6",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "warning": "#f59e0b",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
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
        <mj-section background-color="#ffffff" padding="32px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>
            <mj-divider border-color="{THEME['border']}" border-width="1px" padding="0 0 24px 0" />

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because you have an upcoming cleaning.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def notification_email_template(
    first_name: Optional[str],
    title: str,
    body: str,
    appointment_id: Optional[int] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Generic notification email: greeting, message and an optional link to the appointment"""
    greeting = f"Hi {first_name}," if first_name else "Hi there,"
    content = f"""
    <mj-text>
      {greeting}
    </mj-text>

    <mj-text>
      {body}
    </mj-text>
    """

    cta_url = f"{FRONTEND_URL}/appointments/{appointment_id}" if appointment_id and cta_label else None
    return get_base_template(
        title=title,
        preview_text=body[:90],
        content_sections=content,
        cta_url=cta_url,
        cta_label=cta_label,
    )


def edge_case_decision_template(
    first_name: Optional[str],
    cleaner_name: str,
    formatted_date: str,
    decision_hours: int,
    appointment_id: int,
) -> str:
    """Homeowner must choose between proceeding with one cleaner and cancelling"""
    content = f"""
    <mj-text>
      Hi {first_name or 'there'},
    </mj-text>

    <mj-text>
      Your cleaning on <strong>{formatted_date}</strong> has <strong>{cleaner_name}</strong> confirmed,
      but we couldn't find a second cleaner.
    </mj-text>

    <mj-text padding="0 0 0 20px">
      • <strong>Proceed</strong> with 1 cleaner (the cleaning may take longer)<br/>
      • <strong>Cancel</strong> with no fees
    </mj-text>

    <mj-text color="{THEME['warning']}">
      If we don't hear from you within {decision_hours} hours, your cleaning will proceed with {cleaner_name}.
    </mj-text>
    """

    return get_base_template(
        title="Action needed: your cleaning has 1 cleaner confirmed",
        preview_text=f"Choose to proceed with {cleaner_name} or cancel with no fees",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/appointments/{appointment_id}",
        cta_label="Make a Decision",
    )
