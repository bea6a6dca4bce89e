"""Tests for InferenceClient against a mocked OpenAI client."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from openai import OpenAIError

from expensemail.errors import ModelCallError
from expensemail.models import DEFAULT_CATEGORIES
from expensemail.semantic.inference import InferenceClient
from expensemail.semantic.prompt import build_extraction_prompt


def _client_returning(content):
    client = MagicMock()
    message = SimpleNamespace(content=content)
    client.chat.completions.create.return_value = SimpleNamespace(
        choices=[SimpleNamespace(message=message)]
    )
    return client


@pytest.fixture
def request_():
    return build_extraction_prompt("Invoice from Acme $42 USD", DEFAULT_CATEGORIES)


def test_sends_prompt_and_schema(request_):
    openai_client = _client_returning('{"vendor": "Acme"}')
    client = InferenceClient("http://localhost:8000/v1", model_name="test-model", client=openai_client)

    assert client.extract_expense(request_) == {"vendor": "Acme"}

    kwargs = openai_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"] == [{"role": "user", "content": request_.prompt}]
    assert kwargs["response_format"]["json_schema"]["schema"] == request_.schema


@pytest.mark.parametrize("content", [
    '```json\n{"vendor": "Acme"}\n```',
    '<think>Looking at the receipt...</think>\n{"vendor": "Acme"}',
    'Here you go: {"vendor": "Acme"}',
])
def test_reply_is_cleaned(request_, content):
    client = InferenceClient("http://x", client=_client_returning(content))

    assert client.extract_expense(request_) == {"vendor": "Acme"}


@pytest.mark.parametrize("content", ["not json", "[1, 2]", None])
def test_bad_reply_raises(request_, content):
    client = InferenceClient("http://x", client=_client_returning(content))

    with pytest.raises(ModelCallError):
        client.extract_expense(request_)


def test_provider_failure_raises(request_):
    openai_client = MagicMock()
    openai_client.chat.completions.create.side_effect = OpenAIError("connection refused")
    client = InferenceClient("http://x", client=openai_client)

    with pytest.raises(ModelCallError, match="connection refused"):
        client.extract_expense(request_)
