"""Gmail mail source (Gmail API, label based)."""

import base64
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from billsort import BillSort
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    TRANSIENT_HTTP_STATUS_CODES,
)
from .base import MailAttachment, MailError, MailMessage, MailSource, is_reserved_name

SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']


def _is_retryable_gmail_error(exc: Exception) -> bool:
    if isinstance(exc, HttpError):
        return exc.resp.status in TRANSIENT_HTTP_STATUS_CODES
    return is_transient_network_error(exc)


def _log_retry(exc: Exception, attempt: int, delay: float) -> None:
    error_desc = f"HTTP {exc.resp.status}" if isinstance(exc, HttpError) else type(exc).__name__
    BillSort.print_right(f"  [Retry] Gmail {error_desc} on attempt {attempt}, retrying in {delay:.1f}s...")


def _execute_with_retry(request):
    """Execute a Gmail API request with automatic retry."""
    @retry_on_transient_error(
        is_retryable=_is_retryable_gmail_error,
        max_retries=5,
        base_delay=1.0,
        max_delay=60.0,
        on_retry=_log_retry,
    )
    def execute():
        return request.execute()
    return execute()


def _decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + '=' * (-len(data) % 4))


class GmailSource(MailSource):
    """Reads labelled messages through the Gmail API.

    Authenticate with an OAuth token file (from_token_file) or with a
    service account acting for a Workspace user (from_service_account).
    """

    def __init__(self, credentials=None, user_id: str = "me", service=None) -> None:
        self.user_id = user_id
        self.service = service
        if self.service is None:
            try:
                self.service = build('gmail', 'v1', credentials=credentials)
            except Exception as e:
                raise MailError(f"Failed to initialize Gmail: {e}")
        self._label_ids: Dict[str, str] = {}

    @classmethod
    def from_token_file(cls, token_file: str) -> "GmailSource":
        try:
            creds = Credentials.from_authorized_user_file(token_file, SCOPES)
        except (OSError, ValueError) as e:
            raise MailError(f"Failed to load Gmail token {token_file}: {e}")
        return cls(creds)

    @classmethod
    def from_service_account(cls, service_account_file: str, user: str) -> "GmailSource":
        try:
            creds = service_account.Credentials.from_service_account_file(
                service_account_file, scopes=SCOPES
            ).with_subject(user)
        except (OSError, ValueError) as e:
            raise MailError(f"Failed to load service account {service_account_file}: {e}")
        return cls(creds, user_id=user)

    @property
    def display_name(self) -> str:
        return f"{self.user_id} (Gmail)"

    def _label_id(self, label: str) -> str:
        if label not in self._label_ids:
            response = _execute_with_retry(
                self.service.users().labels().list(userId=self.user_id)
            )
            for item in response.get('labels', []):
                self._label_ids[item['name']] = item['id']
        try:
            return self._label_ids[label]
        except KeyError:
            raise MailError(f"Gmail label not found: {label}")

    def _message_ids(self, label_id: str) -> List[str]:
        ids: List[str] = []
        page_token = None
        while True:
            response = _execute_with_retry(self.service.users().messages().list(
                userId=self.user_id,
                labelIds=[label_id],
                pageToken=page_token,
                maxResults=100,
            ))
            ids.extend(m['id'] for m in response.get('messages', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                return ids

    def _attachments(self, message_id: str, part: Dict,
                     skip: Set[str] = frozenset()) -> List[MailAttachment]:
        """Attachments of a payload part and its children.

        Attachment ids are part ids, which stay the same between fetches
        (Gmail's own attachment ids do not).
        """
        found: List[MailAttachment] = []
        filename = part.get('filename') or ""
        body = part.get('body', {})
        attachment_id = part.get('partId') or filename
        if filename and not is_reserved_name(filename) and attachment_id not in skip:
            data: Optional[bytes] = None
            if body.get('attachmentId'):
                attachment = _execute_with_retry(
                    self.service.users().messages().attachments().get(
                        userId=self.user_id, messageId=message_id, id=body['attachmentId'],
                    )
                )
                data = _decode(attachment.get('data', ''))
            elif body.get('data'):
                data = _decode(body['data'])
            if data is not None:
                found.append(MailAttachment(
                    name=filename,
                    data=data,
                    mime_type=part.get('mimeType') or "application/octet-stream",
                    attachment_id=attachment_id,
                ))
        for child in part.get('parts', []) or []:
            found.extend(self._attachments(message_id, child, skip))
        return found

    def _fetch(self, message_id: str, skip: Set[str] = frozenset()) -> MailMessage:
        message = _execute_with_retry(self.service.users().messages().get(
            userId=self.user_id, id=message_id, format='full',
        ))
        payload = message.get('payload', {})
        headers = {h['name'].lower(): h['value'] for h in payload.get('headers', [])}
        try:
            sent = parsedate_to_datetime(headers['date']) if 'date' in headers else None
        except (TypeError, ValueError):
            sent = None
        return MailMessage(
            message_id=message_id,
            subject=headers.get('subject', ''),
            sender=headers.get('from', ''),
            date=sent,
            attachments=self._attachments(message_id, payload, skip),
        )

    def list_unseen_messages(self, label: str, exclude_ids: Iterable[str] = (),
                             exclude_attachments: Iterable[Tuple[str, str]] = ()
                             ) -> List[MailMessage]:
        seen = set(exclude_ids)
        seen_attachments: Dict[str, Set[str]] = {}
        for message_id, attachment_id in exclude_attachments:
            seen_attachments.setdefault(message_id, set()).add(attachment_id)
        try:
            messages = []
            for message_id in self._message_ids(self._label_id(label)):
                if message_id in seen:
                    continue
                skip = seen_attachments.get(message_id, frozenset())
                message = self._fetch(message_id, skip)
                # Every attachment already taken in
                if skip and not message.attachments:
                    continue
                messages.append(message)
            return messages
        except HttpError as e:
            raise MailError(f"Failed to read Gmail label {label}: {e}")
