"""Semantic understanding module using LLM inference."""

from .inference import InferenceClient
from .prompt import ExtractionPrompt, build_extraction_prompt
from .validation import ExpenseValidator

__all__ = ["InferenceClient", "ExtractionPrompt", "build_extraction_prompt", "ExpenseValidator"]
