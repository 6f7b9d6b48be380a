# notify.py
import re
from urllib.parse import quote

from flask import current_app
from flask_mail import Mail, Message


mail = Mail()


def email_provider() -> str:
    provider = (current_app.config.get("EMAIL_PROVIDER") or "").strip().lower()
    if provider:
        return provider
    return "smtp" if current_app.config.get("MAIL_SERVER") else "log"


def send_email(to, subject, html, text=None, attachments=None) -> bool:
    """Send through SMTP when configured; otherwise only log. Returns True when delivered."""
    if not to:
        return False

    if email_provider() == "smtp":
        try:
            msg = Message(
                subject=subject,
                recipients=[to],
                html=html,
                body=text or re.sub(r"<[^>]*>", "", html or ""),
            )
            for filename, content_type, data in attachments or []:
                msg.attach(filename, content_type, data)
            mail.send(msg)
            current_app.logger.info("Email sent to %s via SMTP", to)
            return True
        except Exception:
            current_app.logger.exception("SMTP email to %s failed", to)

    current_app.logger.warning("No email service delivered message to %s: %s", to, subject)
    return False


def normalize_phone(phone) -> str:
    digits = re.sub(r"[^0-9]", "", phone or "")
    if digits.startswith("0"):
        digits = digits[1:]
    if len(digits) == 10:
        digits = "91" + digits
    return digits


def whatsapp_link(phone, message) -> str:
    return f"https://wa.me/{normalize_phone(phone)}?text={quote(message or '', safe='')}"


def bill_message(business_name, customer_name, total, paid, balance) -> str:
    return (
        f"Dear {customer_name or 'Customer'},\n"
        f"Your bill from {business_name}:\n"
        f"Total: {total}\nPaid: {paid}\nBalance: {balance}\n"
        f"Thank you!"
    )
