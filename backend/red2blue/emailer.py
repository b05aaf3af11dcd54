# red2blue/emailer.py

import smtplib
import socket
from email.message import EmailMessage

from loguru import logger

from red2blue.config import env_int, env_str, truthy


def send_email_if_configured(to_email: str, subject: str, body: str) -> bool:
    """
    Sends email only if SMTP is configured.
    NEVER raises. Returns True if attempted+sent, False if skipped/failed.
    """
    if not truthy("EMAIL_ENABLED"):
        return False

    host = env_str("SMTP_HOST")
    port = env_int("SMTP_PORT", 587)
    username = env_str("SMTP_USERNAME")
    password = env_str("SMTP_PASSWORD")
    from_name = env_str("SMTP_FROM_NAME", "Red2Blue Coaching")
    from_email = env_str("SMTP_FROM_EMAIL", username)

    # If not configured, skip quietly
    if not host or not username or not password or not from_email:
        logger.warning("EMAIL SKIPPED: Missing SMTP_* env vars (host/username/password/from).")
        return False

    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{from_name} <{from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        with smtplib.SMTP(host, port, timeout=15) as server:
            server.ehlo()
            server.starttls()
            server.login(username, password)
            server.send_message(msg)

        logger.info(f"EMAIL SENT to {to_email}")
        return True

    except socket.gaierror as e:
        logger.error(f"EMAIL FAILED: DNS/host lookup failed for SMTP_HOST='{host}'. Error: {e}")
        return False
    except Exception as e:
        logger.error(f"EMAIL FAILED: {e}")
        return False
