"""Base classes for AI classifier providers.

This module defines the abstract interface that all classifier backends must
implement, the shared extraction prompt and the JSON repair used to read
model output.
"""

import ast
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict


class ClassifierError(Exception):
    """Base exception for classifier operations."""
    pass


# Maximum document size sent to a provider (20MB)
MAX_FILE_SIZE_MB = 20


# Invoice extraction prompt
CLASSIFICATION_PROMPT = """You are an accounts assistant reading a document that arrived as an email attachment.
The attached file is named "{filename}".

Decide whether it is an invoice or bill and extract its key fields. Respond with ONLY a JSON object, no prose, in exactly this shape:

{{
  "date": "<invoice date as YYYY-MM-DD, or N/A>",
  "vendorName": "<company that issued the document, or N/A>",
  "invoiceNumber": "<invoice or bill number, or N/A>",
  "amount": "<total amount payable as a plain number, or N/A>",
  "invoiceStatus": "<inflow | outflow | irrelevant | unknown>",
  "isFinancialDocument": <true | false>,
  "documentType": "<invoice | bill | receipt | credit note | debit note | statement | other>",
  "gst": "<GST/VAT amount, or N/A>",
  "tds": "<TDS amount, or N/A>",
  "ot": "<any other tax amount, or N/A>",
  "na": "<short note on anything unusual, or N/A>",
  "numberOfInvoices": <number of separate invoices in the file>
}}

Guidelines:
- invoiceStatus is "inflow" when our company issued the invoice and will receive money, "outflow" when we must pay it.
- Use "irrelevant" for anything that is not an invoice or bill (newsletters, statements, contracts, reports).
- Use "unknown" only if it is an invoice but the direction of payment cannot be determined.
- Never invent values; use N/A when a field is not present.
"""


def strip_code_fences(text: str) -> str:
    """Remove Markdown code fences around a model response."""
    text = text.strip()
    text = re.sub(r'^```(?:json|JSON)?\s*', '', text)
    text = re.sub(r'\s*```$', '', text)
    return text.strip()


def repair_json(text: str) -> Dict[str, Any]:
    """Parse a model response into a dict, repairing common JSON mistakes.

    Handles code fences, prose around the object, trailing commas, single
    quotes and Python literals.

    Raises:
        ClassifierError: If no JSON object can be recovered
    """
    if not text or not text.strip():
        raise ClassifierError("Empty classifier response")

    candidate = strip_code_fences(text)
    start, end = candidate.find('{'), candidate.rfind('}')
    if start == -1 or end <= start:
        raise ClassifierError(f"No JSON object in classifier response: {text[:80]!r}")
    candidate = candidate[start:end + 1]

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        repaired = re.sub(r',\s*([}\]])', r'\1', candidate)
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError:
            # Single quotes and True/False/None: valid Python literal syntax
            pythonish = re.sub(r'\btrue\b', 'True', repaired)
            pythonish = re.sub(r'\bfalse\b', 'False', pythonish)
            pythonish = re.sub(r'\bnull\b', 'None', pythonish)
            try:
                parsed = ast.literal_eval(pythonish)
            except (ValueError, SyntaxError) as e:
                raise ClassifierError(f"Malformed classifier JSON: {e}")

    if not isinstance(parsed, dict):
        raise ClassifierError("Classifier response is not a JSON object")
    return parsed


class Classifier(ABC):
    """Abstract base class for AI classifier providers.

    Providers (Mistral, OpenAI) send the document to a model and return the
    decoded JSON object. They raise ClassifierError for any failure and make
    no routing decisions themselves.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'mistral', 'openai')."""
        pass

    @abstractmethod
    def classify(self, data: bytes, mime_type: str, filename: str) -> Dict[str, Any]:
        """Extract invoice fields from a document.

        Args:
            data: Raw document bytes
            mime_type: MIME type of the document
            filename: Original attachment filename

        Returns:
            Dictionary with the keys requested by CLASSIFICATION_PROMPT

        Raises:
            ClassifierError: On API errors, oversize files or unparseable output
        """
        pass

    # =========================================================================
    # Helper methods (shared by all implementations)
    # =========================================================================

    def _check_size(self, data: bytes) -> None:
        if len(data) > MAX_FILE_SIZE_MB * 1024 * 1024:
            raise ClassifierError(
                f"Document exceeds {MAX_FILE_SIZE_MB}MB limit "
                f"({len(data) / 1024 / 1024:.1f}MB)"
            )

    def _build_prompt(self, filename: str) -> str:
        return CLASSIFICATION_PROMPT.format(filename=filename.replace('"', "'"))
