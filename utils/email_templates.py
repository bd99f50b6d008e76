"""HTML bodies for transactional emails."""

from __future__ import annotations

from html import escape

import config

_STYLE = """
  body { font-family: Arial, sans-serif; background-color: #f5f5f5; margin: 0; padding: 20px; }
  .container { max-width: 600px; margin: 0 auto; background: #fff; border-radius: 12px; }
  .header { background: #4f46e5; color: #fff; padding: 32px 24px; text-align: center; border-radius: 12px 12px 0 0; }
  .content { padding: 32px 24px; }
  .code-box { background: #f8f9ff; border: 2px solid #4f46e5; border-radius: 12px; padding: 24px; text-align: center; }
  .code { font-size: 36px; font-weight: bold; color: #4f46e5; letter-spacing: 8px; font-family: monospace; }
  .footer { background: #f8f9fa; padding: 24px; text-align: center; color: #666; border-radius: 0 0 12px 12px; }
  table.details td { padding: 4px 12px 4px 0; }
"""


def _layout(title: str, heading: str, body: str) -> str:
    app = escape(config.APP_NAME)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><title>{escape(title)} - {app}</title><style>{_STYLE}</style></head>
<body>
  <div class="container">
    <div class="header"><h1>{app}</h1><p>{escape(heading)}</p></div>
    <div class="content">{body}</div>
    <div class="footer"><p><strong>{app} Sports Booking Platform</strong></p></div>
  </div>
</body>
</html>"""


def _code_box(label: str, code: str, minutes: int) -> str:
    return f"""
      <div class="code-box">
        <p><strong>{escape(label)}</strong></p>
        <div class="code">{escape(code)}</div>
        <p>Code expires in {int(minutes)} minutes</p>
      </div>"""


def verification_email(full_name: str, code: str, minutes: int) -> tuple[str, str, str]:
    subject = f"{config.APP_NAME} - Email Verification"
    html = _layout(
        "Email Verification",
        "Email Verification Required",
        f"""
      <h2>Welcome {escape(full_name)}!</h2>
      <p>Thank you for registering. Please verify your email using the code below:</p>
      {_code_box("Your Verification Code", code, minutes)}
      <p>Once verified, you'll be able to book sports facilities!</p>""",
    )
    text = f"Your verification code is {code}. It expires in {minutes} minutes."
    return subject, html, text


def password_reset_email(full_name: str, code: str, minutes: int) -> tuple[str, str, str]:
    subject = f"{config.APP_NAME} - Password Reset"
    html = _layout(
        "Password Reset",
        "Password Reset Request",
        f"""
      <h2>Hello {escape(full_name)},</h2>
      <p>We received a request to reset your password. Use this code to continue:</p>
      {_code_box("Your Reset Code", code, minutes)}
      <p>If you didn't request a reset, you can ignore this email.</p>""",
    )
    text = f"Your password reset code is {code}. It expires in {minutes} minutes."
    return subject, html, text


def password_changed_email(full_name: str) -> tuple[str, str, str]:
    subject = f"{config.APP_NAME} - Password Changed"
    html = _layout(
        "Password Changed",
        "Your password was changed",
        f"""
      <h2>Hello {escape(full_name)},</h2>
      <p>Your password has been reset successfully. If this wasn't you, contact support right away.</p>""",
    )
    return subject, html, "Your password has been reset successfully."


def booking_confirmation_email(*, full_name: str, venue_name: str, venue_city: str, booking) -> tuple[str, str, str]:
    subject = f"{config.APP_NAME} - Booking Confirmed at {venue_name}"
    rows = [
        ("Booking ID", f"#{booking.id}"),
        ("Venue", f"{venue_name}, {venue_city}"),
        ("Sport", booking.sport),
        ("Date", booking.booking_date.isoformat()),
        ("Start time", booking.start_time),
        ("Duration", f"{booking.duration} hour(s)"),
        ("Amount paid", f"{booking.total_amount:.2f}"),
    ]
    table = "".join(f"<tr><td><strong>{escape(k)}</strong></td><td>{escape(str(v))}</td></tr>" for k, v in rows)
    html = _layout(
        "Booking Confirmation",
        "Booking Confirmed",
        f"""
      <h2>Hi {escape(full_name)},</h2>
      <p>Your booking is confirmed. Here are the details:</p>
      <table class="details">{table}</table>
      <p>See you on the court!</p>""",
    )
    text = "\n".join(f"{k}: {v}" for k, v in rows)
    return subject, html, text
