"""Email parsing utilities for RFC822 format emails."""

import email
import hashlib
import logging
from email import policy
from email.message import Message

from ..errors import ParseError
from ..models import EmailAttachment, ParsedEmail

logger = logging.getLogger(__name__)


class EmailParser:
    """Parse RFC822 email messages and extract components."""

    @staticmethod
    def parse(email_bytes: bytes) -> ParsedEmail:
        """Parse email bytes and extract key components.

        Args:
            email_bytes: Email in RFC822 format (bytes)

        Returns:
            ParsedEmail: Parsed email object with all components

        Raises:
            ParseError: If the bytes are empty, have no headers or no sender
        """
        if not email_bytes or not email_bytes.strip():
            raise ParseError("empty message")

        try:
            msg = email.message_from_bytes(email_bytes, policy=policy.default)
        except Exception as e:
            raise ParseError(f"undecodable message: {e}") from e

        if not msg.keys():
            raise ParseError("message has no headers")

        from_address = EmailParser._header(msg, "From")
        if not from_address:
            raise ParseError("message has no From address")

        message_id = EmailParser._header(msg, "Message-ID")
        if not message_id:
            # Stable across redeliveries of the same bytes
            digest = hashlib.sha256(email_bytes).hexdigest()
            message_id = f"<{digest}@generated.expensemail>"
            logger.warning(f"Message has no Message-ID, using {message_id}")

        body_text, body_html = EmailParser._extract_body(msg)

        return ParsedEmail(
            message_id=message_id,
            subject=EmailParser._header(msg, "Subject"),
            from_address=from_address,
            date=EmailParser._header(msg, "Date") or None,
            body_text=body_text,
            body_html=body_html,
            attachments=tuple(EmailParser._extract_attachments(msg)),
        )

    @staticmethod
    def _header(msg: Message, name: str) -> str:
        try:
            value = msg.get(name)
        except Exception:
            # Malformed header values raise on access under policy.default
            value = msg.get_all(name, failobj=[None])[0]
        return str(value).strip() if value is not None else ""

    @staticmethod
    def _extract_attachments(msg: Message) -> list[EmailAttachment]:
        """Extract attachments from email message, in message order.

        Args:
            msg: Email message object

        Returns:
            list[EmailAttachment]: List of email attachments
        """
        attachments = []

        for part in msg.walk():
            filename = part.get_filename()

            # Skip if no filename (not an attachment)
            if not filename:
                continue

            try:
                payload = part.get_payload(decode=True)
            except Exception as e:
                logger.warning(f"Skipping malformed attachment {filename}: {e}")
                continue
            if payload is None:
                continue

            attachments.append(EmailAttachment(
                filename=filename,
                content_type=part.get_content_type(),
                data=payload,
            ))

        return attachments

    @staticmethod
    def _extract_body(msg: Message) -> tuple[str | None, str | None]:
        """Extract both text and HTML bodies from an email message.

        Args:
            msg: Email message object

        Returns:
            tuple[str | None, str | None]: (body_text, body_html)
        """
        body_text = None
        body_html = None

        for part in msg.walk():
            if part.is_multipart():
                continue

            content_disposition = str(part.get("Content-Disposition", ""))
            if "attachment" in content_disposition or part.get_filename():
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue

            charset = part.get_content_charset() or 'utf-8'
            try:
                payload = part.get_payload(decode=True)
                decoded = payload.decode(charset, errors='ignore') if payload else ""
            except LookupError:
                decoded = payload.decode('utf-8', errors='ignore')

            if content_type == "text/plain" and body_text is None:
                body_text = decoded
            elif content_type == "text/html" and body_html is None:
                body_html = decoded

        # Strip whitespace
        if body_text:
            body_text = body_text.strip()
        if body_html:
            body_html = body_html.strip()

        return body_text or None, body_html or None
