"""
Transactional email templates.

Templates use inline CSS for email client compatibility. Each template
function returns (subject, html_body, text_body).
"""

from __future__ import annotations

from html import escape

BG_PAGE = "#F5F7FA"
BG_CARD = "#FFFFFF"
ACCENT = "#2563EB"
TEXT_PRIMARY = "#111827"
TEXT_SECONDARY = "#4B5563"
BORDER = "#E5E7EB"


def _base_layout(content: str, app_name: str = "CourseHub") -> str:
    """Wrap content in the base email layout."""
    return f"""\
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{app_name}</title>
</head>
<body style="margin: 0; padding: 0; background-color: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;">
    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: {BG_PAGE};">
        <tr>
            <td align="center" style="padding: 40px 20px;">
                <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="max-width: 600px; width: 100%;">
                    <tr>
                        <td align="center" style="padding-bottom: 24px;">
                            <span style="font-size: 22px; font-weight: 700; color: {ACCENT};">{app_name}</span>
                        </td>
                    </tr>
                    <tr>
                        <td style="background-color: {BG_CARD}; border: 1px solid {BORDER}; border-radius: 12px; padding: 40px 32px;">
                            {content}
                        </td>
                    </tr>
                    <tr>
                        <td align="center" style="padding-top: 24px;">
                            <p style="color: {TEXT_SECONDARY}; font-size: 12px; line-height: 1.5; margin: 0;">
                                This email was sent by {app_name}.
                            </p>
                        </td>
                    </tr>
                </table>
            </td>
        </tr>
    </table>
</body>
</html>"""


def _button(url: str, label: str) -> str:
    """Render a CTA button."""
    return f"""\
<table role="presentation" cellspacing="0" cellpadding="0" border="0" style="margin: 28px auto;">
    <tr>
        <td align="center" style="background-color: {ACCENT}; border-radius: 8px;">
            <a href="{url}" target="_blank" style="display: inline-block; padding: 14px 32px; color: #FFFFFF; font-size: 16px; font-weight: 600; text-decoration: none; border-radius: 8px;">
                {label}
            </a>
        </td>
    </tr>
</table>"""


def _paragraph(text: str) -> str:
    return f'<p style="color: {TEXT_SECONDARY}; font-size: 16px; line-height: 1.6; margin: 0 0 16px 0;">{text}</p>'


def welcome_email(name: str | None, courses_url: str) -> tuple[str, str, str]:
    """
    Welcome email sent after registration.

    Returns:
        (subject, html_body, text_body)
    """
    display = name or "there"
    greeting = _paragraph(f"Hi {escape(display)},")
    subject = "Welcome to CourseHub"
    intro = _paragraph("Your account is ready. Browse the catalogue and start your first lesson today.")
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Welcome to CourseHub!</h1>
{greeting}
{intro}
{_button(courses_url, "Browse Courses")}"""
    text_body = (
        f"Hi {display},\n\n"
        f"Your CourseHub account is ready. Browse the catalogue here:\n\n{courses_url}\n\n"
        f"-- The CourseHub Team"
    )
    return subject, _base_layout(content), text_body


def purchase_receipt(name: str | None, course_title: str, amount: str, course_url: str) -> tuple[str, str, str]:
    """Receipt sent after a course payment is captured."""
    display = name or "there"
    greeting = _paragraph(f"Hi {escape(display)},")
    subject = f"Your purchase: {course_title}"
    title_html = f'<strong style="color: {TEXT_PRIMARY};">{escape(course_title)}</strong>'
    access = _paragraph(f"You now have full access to {title_html}.")
    charged = _paragraph(f"Amount charged: {escape(amount)}")
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Thanks for your purchase</h1>
{greeting}
{access}
{charged}
{_button(course_url, "Start Learning")}"""
    text_body = (
        f"Hi {display},\n\n"
        f"You now have full access to {course_title}.\n"
        f"Amount charged: {amount}\n\n"
        f"Start learning: {course_url}\n\n"
        f"-- The CourseHub Team"
    )
    return subject, _base_layout(content), text_body


def subscription_payment_failed(name: str | None, billing_url: str) -> tuple[str, str, str]:
    """Sent when a subscription renewal payment fails."""
    display = name or "there"
    greeting = _paragraph(f"Hi {escape(display)},")
    subject = "We couldn't process your subscription payment"
    body = _paragraph(
        "The latest payment for your CourseHub subscription did not go through. "
        "Please update your payment method to keep access to all courses."
    )
    content = f"""\
<h1 style="color: {TEXT_PRIMARY}; font-size: 24px; font-weight: 700; margin: 0 0 16px 0;">Payment failed</h1>
{greeting}
{body}
{_button(billing_url, "Update Payment Method")}"""
    text_body = (
        f"Hi {display},\n\n"
        f"The latest payment for your CourseHub subscription did not go through.\n"
        f"Please update your payment method to keep access to all courses:\n\n{billing_url}\n\n"
        f"-- The CourseHub Team"
    )
    return subject, _base_layout(content), text_body
