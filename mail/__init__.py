"""Mail sources for billsort.

- GmailSource: Gmail API, messages selected by label

Usage:
    from mail import GmailSource

    source = GmailSource.from_token_file("gmail_token.json")
    messages = source.list_unseen_messages("Invoices", exclude_ids=seen)
"""

from .base import (
    MailAttachment,
    MailError,
    MailMessage,
    MailSource,
    RESERVED_PREFIXES,
    is_reserved_name,
)
from .gmail import GmailSource


__all__ = [
    'GmailSource',
    'MailAttachment',
    'MailError',
    'MailMessage',
    'MailSource',
    'RESERVED_PREFIXES',
    'is_reserved_name',
]
