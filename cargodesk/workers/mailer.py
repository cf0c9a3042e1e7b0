# cargodesk/workers/mailer.py
import logging
import smtplib
from email.message import EmailMessage
from typing import Sequence

from cargodesk.core.config import settings

logger = logging.getLogger("worker.mailer")


def send_mail(to: Sequence[str], subject: str, body: str) -> None:
    """
    Send one message to every recipient (Bcc). Without SMTP_HOST the message is
    only logged. SMTP errors propagate so the job is retried by RQ.
    """
    recipients = sorted({addr for addr in to if addr})
    if not recipients:
        return
    if not settings.smtp_host:
        logger.info("SEND_MAIL", extra={"to": recipients, "subject": subject, "body_len": len(body)})
        return

    msg = EmailMessage()
    msg["From"] = settings.email_from
    msg["To"] = settings.email_from
    msg["Bcc"] = ", ".join(recipients)
    msg["Subject"] = subject
    msg.set_content(body)

    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as smtp:
        if settings.smtp_use_tls:
            smtp.starttls()
        if settings.smtp_user:
            smtp.login(settings.smtp_user, settings.smtp_password or "")
        smtp.send_message(msg)
    logger.info("mail_sent", extra={"recipients": len(recipients), "subject": subject})
