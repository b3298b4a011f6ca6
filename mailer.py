import logging
import os
from typing import Iterable, Union

import resend

logger = logging.getLogger(__name__)

RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
MAIL_FROM = os.getenv("MAIL_FROM", "1nceMore <no-reply@1ncemore.store>")


def send_email(to: Union[str, Iterable[str]], subject: str, text: str, html: str) -> bool:
    """Send one message through Resend. Returns False when mail is not configured."""
    recipients = [to] if isinstance(to, str) else [r for r in to if r]
    if not recipients:
        return False
    if not RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not set; skipping email %r to %d recipient(s)", subject, len(recipients))
        return False
    resend.api_key = RESEND_API_KEY
    resend.Emails.send({
        "from": MAIL_FROM,
        "to": recipients,
        "subject": subject,
        "text": text,
        "html": html,
    })
    logger.info("Sent email %r to %d recipient(s)", subject, len(recipients))
    return True


def send_otp_email(email: str, full_name: str, otp: str) -> bool:
    name = full_name or email
    text = (
        f"Hello {name},\n\n"
        "Thank you for registering with 1nceMore!\n\n"
        f"Your One-Time Password (OTP) for account verification is: {otp}\n\n"
        "Please enter this OTP on the verification page to complete your registration.\n\n"
        "If you did not request this, please ignore this email.\n\n"
        "Best regards,\nThe 1nceMore Team"
    )
    html = (
        '<div style="font-family: Poppins, Arial, sans-serif; color: #222;">'
        "<h2>Welcome to 1nceMore!</h2>"
        f"<p>Hi <strong>{name}</strong>,</p>"
        "<p>Your One-Time Password (OTP) for account verification is:</p>"
        f'<div style="font-size: 2rem; font-weight: bold; color: #ff9800; margin: 16px 0;">{otp}</div>'
        "<p>Please enter this OTP on the verification page to complete your registration.</p>"
        "<p>Best regards,<br/>The 1nceMore Team</p>"
        "</div>"
    )
    return send_email(email, "Your OTP for 1nceMore Registration", text, html)


def send_new_order_email(admin_emails: Iterable[str], order: dict) -> bool:
    items = ", ".join(f"{i['name']} (x{i['quantity']})" for i in order.get("items", []))
    order_id = order.get("id") or order.get("_id")
    text = (
        "A new order has been placed.\n"
        f"Order ID: {order_id}\n"
        f"User: {order.get('user_email')}\n"
        f"Total: ₹{order.get('total_amount')}\n"
        f"Items: {items}"
    )
    html = (
        "<h2>New Order Placed</h2>"
        f"<p><b>Order ID:</b> {order_id}</p>"
        f"<p><b>User:</b> {order.get('user_email')}</p>"
        f"<p><b>Total:</b> ₹{order.get('total_amount')}</p>"
        f"<p><b>Items:</b> {items}</p>"
    )
    return send_email(list(admin_emails), "New Order Placed", text, html)
