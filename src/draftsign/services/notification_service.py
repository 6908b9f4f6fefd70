"""
Email notifications for the signing workflow.

Sends signing requests with the tokenized link and the finalized copy
with the signed PDF attached. Delivery is fire-and-log: a failed email
never rolls back the contract transition that triggered it.
"""

import smtplib
from datetime import datetime
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from html import escape

import structlog

from draftsign.config import get_settings

logger = structlog.get_logger(__name__)


class NotificationService:
    """SMTP email sender for signing requests and finalized contracts."""

    def __init__(self):
        settings = get_settings()
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_user = settings.smtp_user
        self.smtp_password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.sender_email = settings.smtp_sender
        self.company_name = settings.company_name

    def send_signing_request(
        self,
        recipient_email: str,
        signing_url: str,
        contract_title: str,
        expires_at: datetime | None = None,
    ) -> bool:
        """
        Email a counterparty the link to review and sign a contract.

        Returns:
            True if the email was handed to the SMTP server
        """
        expires_line = (
            f"<p><strong>Link expires:</strong> {expires_at:%Y-%m-%d %H:%M} UTC</p>"
            if expires_at
            else ""
        )
        html_body = f"""
        <p>You have been asked to sign <strong>{escape(contract_title)}</strong>.</p>
        <p><a href="{escape(signing_url)}">Review and sign the contract</a></p>
        {expires_line}
        <p>The link can be used once. If it has expired, ask the sender for a new one.</p>
        <p>{escape(self.company_name)}</p>
        """
        return self._send_email(
            recipients=[recipient_email],
            subject=f"Signature requested: {contract_title}",
            html_body=html_body,
            notification_type="signing_request",
        )

    def send_finalized_copy(
        self,
        recipient_emails: list[str],
        pdf_bytes: bytes,
        contract_title: str,
    ) -> bool:
        """Email every party the fully signed contract as a PDF attachment."""
        recipients = sorted({email for email in recipient_emails if email})
        if not recipients:
            logger.info("finalized_copy_skipped", reason="no_recipients")
            return False

        html_body = f"""
        <p>All parties have signed <strong>{escape(contract_title)}</strong>.</p>
        <p>The completed contract is attached for your records.</p>
        <p>{escape(self.company_name)}</p>
        """
        filename = f"{contract_title.strip() or 'contract'}.pdf".replace("/", "-")
        return self._send_email(
            recipients=recipients,
            subject=f"Completed: {contract_title}",
            html_body=html_body,
            notification_type="finalized_copy",
            attachments=[(filename, pdf_bytes)],
        )

    def _send_email(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        notification_type: str = "general",
        attachments: list[tuple[str, bytes]] | None = None,
    ) -> bool:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = subject
        msg["From"] = self.sender_email
        msg["To"] = ", ".join(recipients)
        msg["X-Notification-Type"] = notification_type

        alt = MIMEMultipart("alternative")
        alt.attach(MIMEText("This email requires an HTML-capable client.", "plain"))
        alt.attach(MIMEText(html_body, "html"))
        msg.attach(alt)

        for filename, content in attachments or []:
            part = MIMEApplication(content, _subtype="pdf")
            part.add_header("Content-Disposition", "attachment", filename=filename)
            msg.attach(part)

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "email_send_failed",
                notification_type=notification_type,
                recipients=len(recipients),
                error=str(e),
            )
            return False

        logger.info("email_sent", notification_type=notification_type, recipients=len(recipients))
        return True


@lru_cache()
def get_notification_service() -> NotificationService:
    """Get cached notification service instance."""
    return NotificationService()
