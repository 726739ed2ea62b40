"""Base classes for mail sources."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple


class MailError(Exception):
    """Base exception for mail source operations."""
    pass


# Attachment names the mail platform reserves for inline parts
RESERVED_PREFIXES = ("ATT",)


@dataclass
class MailAttachment:
    """One attachment of a message.

    Attributes:
        name: Attachment filename as sent
        data: Raw bytes
        mime_type: MIME type declared by the sender
        attachment_id: Source-specific attachment identifier
    """
    name: str
    data: bytes
    mime_type: str = "application/octet-stream"
    attachment_id: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class MailMessage:
    """A message with its attachments."""
    message_id: str
    subject: str = ""
    sender: str = ""
    date: Optional[datetime] = None
    attachments: List[MailAttachment] = field(default_factory=list)


def is_reserved_name(name: str) -> bool:
    return any(name.startswith(prefix) for prefix in RESERVED_PREFIXES)


class MailSource(ABC):
    """A read-only stream of labelled messages."""

    @property
    @abstractmethod
    def display_name(self) -> str:
        pass

    @abstractmethod
    def list_unseen_messages(self, label: str, exclude_ids: Iterable[str] = (),
                             exclude_attachments: Iterable[Tuple[str, str]] = ()
                             ) -> List[MailMessage]:
        """Return messages under a label, skipping already seen message ids.

        ``exclude_attachments`` holds ``(message_id, attachment_id)`` pairs
        that are not downloaded again; a message left with none of its
        attachments is omitted. Attachments with reserved names are dropped
        before they are returned.

        Raises:
            MailError: If the label or a message can't be read
        """
        pass
