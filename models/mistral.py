"""Mistral AI classifier provider.

Uploads the document to Mistral's OCR file store and asks
mistral-small-latest to return the invoice fields as JSON.
"""

import base64
import os
from typing import Any, Dict

from mistralai import Mistral

from .base import Classifier, ClassifierError, repair_json


class MistralClassifier(Classifier):
    """Mistral AI implementation of the invoice classifier."""

    def __init__(self) -> None:
        """Initialize Mistral client.

        Raises:
            KeyError: If MISTRAL_API_KEY environment variable is not set
        """
        api_key = os.environ["MISTRAL_API_KEY"]
        self.client = Mistral(api_key=api_key)

    @property
    def name(self) -> str:
        return "mistral"

    def _document_part(self, data: bytes, mime_type: str, filename: str) -> Dict[str, Any]:
        """Build the message part that carries the document."""
        if mime_type.startswith("image/"):
            encoded = base64.b64encode(data).decode("utf-8")
            return {"type": "image_url", "image_url": f"data:{mime_type};base64,{encoded}"}

        try:
            upload_response = self.client.files.upload(
                file={
                    "file_name": filename or "attachment.pdf",
                    "content": data,
                },
                purpose="ocr"
            )
            signed_url = self.client.files.get_signed_url(file_id=upload_response.id)
        except Exception as e:
            raise ClassifierError(f"Failed to upload document to Mistral: {e}")
        return {"type": "document_url", "document_url": signed_url.url}

    def classify(self, data: bytes, mime_type: str, filename: str) -> Dict[str, Any]:
        self._check_size(data)
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self._build_prompt(filename)},
                    self._document_part(data, mime_type or "application/pdf", filename),
                ]
            }
        ]

        try:
            response = self.client.chat.complete(
                model="mistral-small-latest",
                messages=messages,
                response_format={"type": "json_object"},
            )
            response_text = response.choices[0].message.content
        except Exception as e:
            raise ClassifierError(f"Mistral API error: {e}")

        return repair_json(response_text)
