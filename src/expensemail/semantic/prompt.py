"""Prompt and output schema for expense extraction."""

from dataclasses import dataclass
from typing import Any, Sequence

DATE_PATTERN = r"^\d{2}-\d{2}-\d{4}$"

REQUIRED_FIELDS = (
    "vendor",
    "expenseDate",
    "amountValue",
    "currencyCode",
    "category",
    "description",
)


@dataclass(frozen=True)
class ExtractionPrompt:
    """A prompt and the JSON schema the reply must match."""

    prompt: str
    schema: dict[str, Any]


def build_output_schema(categories: Sequence[str]) -> dict[str, Any]:
    """JSON schema requiring every expense field, category as an enum."""
    return {
        "type": "object",
        "properties": {
            "vendor": {
                "type": "string",
                "description": "Name of the merchant or company that issued the receipt",
            },
            "expenseDate": {
                "type": "string",
                "pattern": DATE_PATTERN,
                "description": "Date of the expense as DD-MM-YYYY",
            },
            "amountValue": {
                "type": "number",
                "description": "Total amount paid",
            },
            "currencyCode": {
                "type": "string",
                "minLength": 3,
                "maxLength": 3,
                "description": "ISO 4217 currency code, e.g. USD",
            },
            "category": {
                "type": "string",
                "enum": list(categories),
            },
            "description": {
                "type": "string",
                "description": "Short summary of what was purchased",
            },
        },
        "required": list(REQUIRED_FIELDS),
        "additionalProperties": False,
    }


def build_extraction_prompt(text: str, categories: Sequence[str]) -> ExtractionPrompt:
    """Build the extraction prompt for a receipt or invoice text.

    Pure and deterministic: identical inputs give identical prompts, so a
    recorded model reply can be replayed against the same prompt.

    Args:
        text: Redacted receipt text
        categories: Allowed category labels, in display order

    Returns:
        ExtractionPrompt: Prompt string and output schema
    """
    category_list = ", ".join(categories)
    prompt = f"""Extract the expense from this receipt or invoice.

Receipt:
{text}

Respond with ONLY a JSON object. Do not include thinking process, markdown blocks, or any text before or after the JSON.

Output JSON with these exact fields:
{{
  "vendor": "company name",
  "expenseDate": "DD-MM-YYYY",
  "amountValue": total amount as a number,
  "currencyCode": "three-letter currency code",
  "category": one of [{category_list}],
  "description": "short description of the purchase"
}}"""
    return ExtractionPrompt(prompt=prompt, schema=build_output_schema(categories))
