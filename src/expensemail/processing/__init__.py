"""Email parsing and text normalization."""

from .email_parser import EmailParser
from .text import Redactor, TextNormalizer, extract_pdf_text, html_to_text

__all__ = ["EmailParser", "Redactor", "TextNormalizer", "extract_pdf_text", "html_to_text"]
