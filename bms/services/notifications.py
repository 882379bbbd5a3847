"""Verification code delivery: email through Mailgun, SMS through Twilio.

Both senders return True when the provider accepted the message. When the
provider is not configured the send is skipped, logged, and False returned;
registration still succeeds in that case.
"""
import logging

import httpx
from twilio.rest import Client

from bms.config import Settings, get_settings

log = logging.getLogger("uvicorn.error")

MAILGUN_US_BASE = "https://api.mailgun.net"


def mailgun_configured(settings: Settings | None = None) -> bool:
    s = settings or get_settings()
    return bool(s.mailgun_api_key and s.mailgun_domain)


def twilio_configured(settings: Settings | None = None) -> bool:
    s = settings or get_settings()
    return bool(s.twilio_account_sid and s.twilio_auth_token and s.twilio_from_phone_number)


def send_email(to_email: str, subject: str, html_content: str, text_content: str | None = None, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not mailgun_configured(settings):
        log.warning("[Email] NOT SENT: to=%s subject=%s. MAILGUN_API_KEY and MAILGUN_DOMAIN must both be set.", to_email, subject)
        return False

    base = (settings.mailgun_base_url or MAILGUN_US_BASE).rstrip("/")
    domain = settings.mailgun_domain.lower()
    from_addr = settings.mailgun_from_email
    if "@" not in from_addr or from_addr.split("@")[-1].lower() != domain:
        # Mailgun only delivers from addresses on the sending domain
        from_addr = f"noreply@{domain}"
    data = {
        "from": f"{settings.mailgun_from_name} <{from_addr}>",
        "to": to_email,
        "subject": subject,
        "text": text_content or "",
        "html": html_content or "",
    }
    try:
        with httpx.Client(timeout=10.0) as client:
            r = client.post(f"{base}/v3/{domain}/messages", auth=("api", settings.mailgun_api_key), data=data)
    except httpx.HTTPError as e:
        log.error("[Email] Mailgun request failed: to=%s error=%s: %s", to_email, type(e).__name__, e)
        return False
    if 200 <= r.status_code < 300:
        log.info("[Email] Sent: to=%s status=%s", to_email, r.status_code)
        return True
    log.error("[Email] Mailgun rejected: to=%s status=%s body=%s", to_email, r.status_code, r.text[:500])
    return False


def send_sms(to_phone: str, body: str, settings: Settings | None = None) -> bool:
    settings = settings or get_settings()
    if not twilio_configured(settings):
        log.warning("[SMS] NOT SENT: to=%s. Twilio credentials are not configured.", to_phone)
        return False

    try:
        client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        message = client.messages.create(body=body, from_=settings.twilio_from_phone_number, to=to_phone)
    except Exception as e:
        # Send failures are reported through the return value only
        log.error("[SMS] Twilio send failed: to=%s error=%s: %s", to_phone, type(e).__name__, e)
        return False
    log.info("[SMS] Sent: to=%s sid=%s", to_phone, message.sid)
    return True


def send_verification_email(to_email: str, code: str, expire_minutes: int = 10) -> bool:
    subject = "[BMS] Your email verification code"
    text_content = f"Your Building Management verification code is: {code}. It expires in {expire_minutes} minutes."
    html_content = f"""
    <p>Your Building Management verification code is:</p>
    <p style="font-size: 24px; font-weight: bold; letter-spacing: 4px;">{code}</p>
    <p>It expires in {expire_minutes} minutes. If you did not create an account, you can ignore this email.</p>
    """
    return send_email(to_email, subject, html_content, text_content=text_content)


def send_verification_sms(to_phone: str, code: str, expire_minutes: int = 10) -> bool:
    return send_sms(to_phone, f"Your BMS verification code is {code}. It expires in {expire_minutes} minutes.")


def send_password_reset_email(to_email: str, code: str, expire_minutes: int = 10) -> bool:
    subject = "[BMS] Password reset code"
    text_content = (
        f"Your Building Management password reset code is: {code}. It expires in {expire_minutes} minutes. "
        "If you didn't request a password reset, ignore this email and make sure your account is secure."
    )
    html_content = f"""
    <p>Your Building Management password reset code is:</p>
    <p style="font-size: 24px; font-weight: bold; letter-spacing: 4px;">{code}</p>
    <p>It expires in {expire_minutes} minutes. If you didn't request a password reset, ignore this email and make sure your account is secure.</p>
    """
    return send_email(to_email, subject, html_content, text_content=text_content)
