import logging
import os
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from html import escape

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("EMAIL_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("EMAIL_PORT", "587"))
SMTP_USER = os.getenv("EMAIL_USER")
SMTP_PASSWORD = os.getenv("EMAIL_PASSWORD")
DEFAULT_SENDER = os.getenv("EMAIL_SENDER", SMTP_USER or "noreply@example.com")
DEFAULT_SENDER_NAME = os.getenv("EMAIL_SENDER_NAME", "Street2Ivy NDA")

def send_email(
    to: str,
    subject: str,
    body: str,
    html_body: str | None = None,
):
    display_name = (DEFAULT_SENDER_NAME or "").strip()
    from_value = formataddr((display_name, DEFAULT_SENDER)) if display_name else DEFAULT_SENDER
    if SMTP_USER and SMTP_PASSWORD:
        msg = EmailMessage()
        msg["From"] = from_value
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body or "")
        if html_body:
            msg.add_alternative(html_body, subtype="html")
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as smtp:
            smtp.starttls()
            smtp.login(SMTP_USER, SMTP_PASSWORD)
            smtp.send_message(msg)
    else:
        logger.info("EMAIL (stub) from=%s to=%s subject=%s\n%s", from_value, to, subject, body)

def notify_nda_completed(request, signers):
    """Tell both parties the NDA is fully signed."""
    subject = f"Completed: {request.title}"
    names = ", ".join(s.name or s.email or s.user_id for s in signers)
    plain_body = (
        f"All parties ({names}) have signed {request.title}.\n\n"
        f"Signed document: {request.signed_document_url}\n"
    )
    html_body = f"""
<html>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; background: #f5f6f8; padding: 24px;">
    <div style="max-width: 520px; margin: 0 auto; background: #ffffff; border-radius: 12px; padding: 24px;">
      <h2 style="margin-top: 0; font-size: 20px; color: #0f172a;">NDA fully signed</h2>
      <p style="font-size: 14px; color: #1e293b; line-height: 1.5;">
        All parties ({escape(names)}) have signed <strong>{escape(request.title)}</strong>.
      </p>
      <p style="font-size: 13px; color: #475569;">
        <a href="{escape(request.signed_document_url or '')}">Download the signed NDA</a>
      </p>
    </div>
  </body>
</html>
"""
    for s in signers:
        if not s.email:
            continue
        send_email(s.email, subject, plain_body, html_body=html_body)
