"""
AWS SES Email Service for sending confirmation emails.

Handles message formatting and AWS SES delivery. Transport failures are
returned as MailResult errors; nothing is retried here.
"""

import logging
import textwrap
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
import boto3
from botocore.exceptions import ClientError, BotoCoreError
from app.core.config import settings

logger = logging.getLogger(__name__)

WORD_WRAP = 50


@dataclass
class OutboundMessage:
    to: str
    from_email: str
    from_name: str
    subject: str
    body: str


@dataclass
class MailResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def build_confirmation_message(to_email: str, link: str) -> OutboundMessage:
    """
    Build the confirmation email: the configured body text followed by the link.

    The body is word-wrapped at 50 characters; the link is kept on its own
    line so it is never broken.
    """
    body = textwrap.fill(settings.EMAIL_BODY, width=WORD_WRAP) + "\n" + link + "\n"

    return OutboundMessage(
        to=to_email,
        from_email=settings.EMAIL_FROM,
        from_name=settings.EMAIL_FROM_NAME,
        subject=settings.EMAIL_SUBJECT,
        body=body,
    )


class EmailService:
    """
    Service for sending emails via AWS SES.

    Supports both development (sandbox) and production modes.
    """

    def __init__(self, ses_client=None):
        """Initialize AWS SES client"""
        if ses_client is not None:
            self.ses_client = ses_client
            return

        session_kwargs = {
            'region_name': settings.AWS_REGION,
        }

        # Add credentials if provided (otherwise uses IAM role)
        if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            session_kwargs['aws_access_key_id'] = settings.AWS_ACCESS_KEY_ID
            session_kwargs['aws_secret_access_key'] = settings.AWS_SECRET_ACCESS_KEY

        self.ses_client = boto3.client('ses', **session_kwargs)

    def send(self, message: OutboundMessage) -> MailResult:
        """
        Send a plain-text email.

        Args:
            message: The message to deliver

        Returns:
            MailResult: ok with SES MessageId, or the transport error
        """
        try:
            response = self.ses_client.send_email(
                Source=f"{message.from_name} <{message.from_email}>",
                Destination={'ToAddresses': [message.to]},
                Message={
                    'Subject': {'Data': message.subject, 'Charset': 'UTF-8'},
                    'Body': {
                        'Text': {'Data': message.body, 'Charset': 'UTF-8'}
                    }
                }
            )

            message_id = response.get('MessageId')
            logger.info(f"Confirmation email sent (MessageId: {message_id})")
            return MailResult(ok=True, message_id=message_id)

        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            logger.error(f"AWS SES ClientError: {error_code} - {error_message}")

            if error_code == 'MessageRejected':
                logger.error(f"Email rejected: {error_message}")
            elif error_code == 'MailFromDomainNotVerified':
                logger.error("Sender email not verified in SES")

            return MailResult(ok=False, error=f"{error_code}: {error_message}")

        except BotoCoreError as e:
            logger.error(f"AWS BotoCoreError: {str(e)}")
            return MailResult(ok=False, error=str(e))


@lru_cache
def get_email_service() -> EmailService:
    """Dependency returning the shared mailer (overridden in tests)."""
    return EmailService()
