"""LLM inference for expense extraction."""

import json
import logging
import re
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from ..errors import ModelCallError
from .prompt import ExtractionPrompt

logger = logging.getLogger(__name__)


class InferenceClient:
    """Client for LLM inference using OpenAI-compatible API (vLLM)."""

    def __init__(
        self,
        api_url: str,
        model_name: str = "Qwen/Qwen3-8B-FP8",
        api_key: str = "not-needed",
        client: Optional[OpenAI] = None,
    ):
        """Initialize inference client.

        Args:
            api_url: Base URL for the OpenAI-compatible API (e.g., vLLM endpoint)
            model_name: Model name to use for inference
            api_key: API key, unused by a local vLLM server
            client: Preconfigured OpenAI client (mainly for tests)
        """
        self.client = client or OpenAI(
            base_url=api_url,
            api_key=api_key,
            max_retries=0,  # Retries belong to the pipeline step
        )
        self.model_name = model_name
        logger.info(f"Inference client initialized with model: {model_name}")

    def extract_expense(self, request: ExtractionPrompt) -> Any:
        """Ask the model for an expense matching the request schema.

        Args:
            request: Prompt and output schema

        Returns:
            The decoded JSON reply. It is not validated here.

        Raises:
            ModelCallError: On transport/provider failure or undecodable reply
        """
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[{"role": "user", "content": request.prompt}],
                temperature=0.1,
                top_p=0.95,
                max_tokens=512,
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "expense",
                        "schema": request.schema,
                        "strict": True,
                    },
                },
            )
        except OpenAIError as e:
            raise ModelCallError(f"model request failed: {e}") from e

        if not response.choices or response.choices[0].message.content is None:
            raise ModelCallError("model returned no content")

        response_text = response.choices[0].message.content.strip()
        cleaned = self._extract_json(response_text)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.error(f"Undecodable model reply: {response_text[:200]!r}")
            raise ModelCallError(f"model reply is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise ModelCallError(f"model reply is {type(data).__name__}, expected object")
        return data

    def _extract_json(self, text: str) -> str:
        """Extract JSON from text that may contain markdown code blocks or thinking tags.

        Args:
            text: Response text that may contain JSON

        Returns:
            str: Cleaned JSON string
        """
        # Remove thinking tags if present
        if '<think>' in text or '</think>' in text:
            text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL)
            text = text.strip()

        if '```' in text:
            json_match = re.search(r'```(?:json)?\s*(\{.*?\})\s*```', text, re.DOTALL)
            if json_match:
                return json_match.group(1)

        # Find the JSON object if it doesn't start with {
        if not text.startswith('{'):
            json_match = re.search(r'\{.*\}', text, re.DOTALL)
            if json_match:
                return json_match.group(0)

        return text
