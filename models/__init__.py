"""AI classifier providers for billsort.

Provides a uniform interface for invoice extraction across providers:
- MistralClassifier: Mistral AI (default)
- OpenAIClassifier: OpenAI GPT-4o

Usage:
    from models import create_classifier

    classifier = create_classifier("mistral")
    fields = classifier.classify(pdf_bytes, "application/pdf", "invoice.pdf")
"""

from typing import Optional

from .base import Classifier, ClassifierError, repair_json
from .mistral import MistralClassifier
from .openai import OpenAIClassifier


def create_classifier(provider: str = "mistral") -> Optional[Classifier]:
    """Create a classifier for the specified provider.

    Args:
        provider: "mistral", "openai", or "none" to run on the
            heuristic extractor only

    Returns:
        Classifier instance, or None for "none"

    Raises:
        ValueError: If provider is not recognized
        KeyError: If the provider's API key is not configured
    """
    provider = provider.lower()

    if provider == "mistral":
        return MistralClassifier()
    elif provider == "openai":
        return OpenAIClassifier()
    elif provider == "none":
        return None
    else:
        raise ValueError(
            f"Unknown classifier provider: {provider}. "
            "Must be 'mistral', 'openai' or 'none'"
        )


__all__ = [
    'Classifier',
    'ClassifierError',
    'MistralClassifier',
    'OpenAIClassifier',
    'create_classifier',
    'repair_json',
]
