"""OpenAI classifier provider.

Sends the document base64-encoded to gpt-4o and asks for the invoice fields
as a JSON object.
"""

import base64
from typing import Any, Dict

from openai import OpenAI

from .base import Classifier, ClassifierError, repair_json


class OpenAIClassifier(Classifier):
    """OpenAI implementation of the invoice classifier."""

    def __init__(self) -> None:
        """Initialize OpenAI client.

        Uses OPENAI_API_KEY environment variable automatically.
        """
        self.client = OpenAI()

    @property
    def name(self) -> str:
        return "openai"

    def classify(self, data: bytes, mime_type: str, filename: str) -> Dict[str, Any]:
        self._check_size(data)
        mime_type = mime_type or "application/pdf"
        encoded = base64.b64encode(data).decode("utf-8")

        if mime_type.startswith("image/"):
            document = {
                "type": "image_url",
                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
            }
        else:
            document = {
                "type": "file",
                "file": {
                    "filename": filename or "attachment.pdf",
                    "file_data": f"data:{mime_type};base64,{encoded}",
                },
            }

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self._build_prompt(filename)},
                    document,
                ]
            }
        ]

        try:
            response = self.client.chat.completions.create(
                model="gpt-4o",
                messages=messages,
                response_format={"type": "json_object"},
            )
            response_text = response.choices[0].message.content
        except Exception as e:
            raise ClassifierError(f"OpenAI API error: {e}")

        return repair_json(response_text)
