"""Choose the text an expense is extracted from, and redact it.

Selection policy: the first PDF attachment wins, then the plain-text body,
then the HTML body. Redaction runs on whichever text was chosen.
"""

import logging
import re
from io import BytesIO
from typing import Callable, Optional

from bs4 import BeautifulSoup
from pypdf import PdfReader

from ..config import RedactionConfig
from ..errors import TextExtractionError
from ..models import ContentSource, EmailAttachment, ExtractedContent, ParsedEmail

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


def is_pdf(attachment: EmailAttachment) -> bool:
    """Whether an attachment should be read as a PDF.

    Some senders label PDFs application/octet-stream, so the filename
    extension is accepted as well.
    """
    if attachment.content_type.lower() == PDF_CONTENT_TYPE:
        return True
    return attachment.filename.lower().endswith(".pdf")


def extract_pdf_text(data: bytes) -> str:
    """Extract the text of all pages, merged into one string.

    Args:
        data: PDF file contents

    Returns:
        str: Page texts joined by newlines

    Raises:
        TextExtractionError: If the PDF cannot be read
    """
    try:
        reader = PdfReader(BytesIO(data))
        pages = [(page.extract_text() or "") for page in reader.pages]
    except Exception as e:
        raise TextExtractionError(f"unreadable PDF: {e}") from e
    text = "\n".join(pages)
    return text.replace("\u202f", " ").replace("\xa0", " ").strip()


def html_to_text(html: str) -> str:
    """Convert an HTML body to plain text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "head", "meta", "noscript"]):
        element.decompose()
    text = soup.get_text(separator=" ")
    return re.sub(r"\s+", " ", text).strip()


class Redactor:
    """Literal substring redaction of configured personal values.

    Only exact configured strings are replaced; names, emails or addresses
    that differ in case or spacing are left untouched.
    """

    def __init__(self, config: RedactionConfig):
        self._replacements = config.replacements()

    def redact(self, text: str) -> str:
        for literal, placeholder in self._replacements:
            text = text.replace(literal, placeholder)
        return text


class TextNormalizer:
    """Pick the expense text out of a parsed email and redact it."""

    def __init__(
        self,
        redactor: Redactor,
        pdf_extractor: Callable[[bytes], str] = extract_pdf_text,
    ):
        """Initialize the normalizer.

        Args:
            redactor: Redaction applied to the chosen text
            pdf_extractor: Function turning PDF bytes into text
        """
        self.redactor = redactor
        self.pdf_extractor = pdf_extractor

    def extract(self, parsed_email: ParsedEmail) -> ExtractedContent:
        """Select and redact the text for the model.

        Args:
            parsed_email: Parsed email object

        Returns:
            ExtractedContent: Redacted text and where it came from
        """
        text, source = self._select(parsed_email)
        if source is not ContentSource.NONE:
            text = self.redactor.redact(text)
        logger.info(
            f"Extracted {len(text)} chars from {source.value} "
            f"for {parsed_email.message_id}"
        )
        return ExtractedContent(text=text, source=source)

    def _select(self, parsed_email: ParsedEmail) -> tuple[str, ContentSource]:
        pdf = self._first_pdf(parsed_email)
        if pdf is not None:
            logger.debug(f"Using PDF attachment {pdf.filename}")
            return self.pdf_extractor(pdf.data), ContentSource.ATTACHMENT

        if parsed_email.body_text:
            return parsed_email.body_text, ContentSource.BODY

        if parsed_email.body_html:
            return html_to_text(parsed_email.body_html), ContentSource.BODY

        return "", ContentSource.NONE

    @staticmethod
    def _first_pdf(parsed_email: ParsedEmail) -> Optional[EmailAttachment]:
        for attachment in parsed_email.attachments:
            if is_pdf(attachment):
                return attachment
        return None
