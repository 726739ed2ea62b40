"""Deduplicating intake of mailed bills.

Intake runs in two passes. Pass 1 walks the unseen messages and collects
the attachments that need work (giving the progress total). Pass 2
classifies, renames and stores each one. Cancelling before pass 2 starts
leaves no side effects; cancelling during pass 2 keeps everything already
committed.

Per attachment:
  - low-confidence documents (irrelevant/unknown) go to Buffer2 for triage
  - a canonical name that is already active becomes a duplicate row
    pointing at the original, without storing the file again
  - everything else is stored in Buffer/Active, copied to its flow folder,
    and logged in the buffer, main and flow logs
"""

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from billsort import BillSort
from mail import MailAttachment, MailMessage
from storage import FileInfo, StorageError
from . import activity_log
from .classification import Classification
from .context import RunContext
from .errors import ConsistencyError, TransientIOError
from .folders import FLOW_KINDS, FolderKind
from .log_store import BufferRecord, LogStore, TriageRecord, STATUS_ACTIVE
from .naming import attachment_skip_reason, canonicalize, lookup_unique_id, parse_date
from .records import flow_row, now_stamp

STORED = "stored"
DUPLICATE = "duplicate"
TRIAGE = "triage"
SKIPPED = "skipped"
FAILED = "failed"

# repeated_ref for duplicates of names supplied by the caller without a row
EXTERNAL_ORIGINAL = 0


def attachment_key(attachment_id: str, name: str) -> str:
    return attachment_id or name


def logged_attachments(store: LogStore, company: str) -> Set[Tuple[str, str]]:
    """(message id, attachment key) of every attachment a buffer or triage row records."""
    keys = set()
    for kind in ("buffer", "buffer2"):
        for row in store.read_all(company, kind):
            if row.message_id:
                keys.add((row.message_id, attachment_key(row.attachment_id, row.original_name)))
    return keys


class CancellationToken:
    """Cooperative cancellation flag shared between the UI and a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class IntakeDecision:
    """What intake did with one attachment."""
    message_id: str
    attachment_name: str
    action: str
    canonical_name: str = ""
    unique_id: str = ""
    row_id: Optional[int] = None
    repeated_ref: Optional[int] = None
    detail: str = ""


@dataclass
class IntakeResult:
    company: str
    decisions: List[IntakeDecision] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False

    def with_action(self, action: str) -> List[IntakeDecision]:
        return [d for d in self.decisions if d.action == action]


@dataclass
class _Candidate:
    message: MailMessage
    attachment: MailAttachment


class IntakeEngine:
    """Turns unseen messages into stored, logged documents for one company."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def run(self, company: str, messages: Iterable[MailMessage],
            already_processed_message_ids: Iterable[str] = (),
            already_processed_canonical_names: Iterable[str] = (),
            token: Optional[CancellationToken] = None) -> IntakeResult:
        """Process messages for a company while holding its lock.

        Raises:
            LockTimeoutError: If another run holds the company lock
        """
        token = token or CancellationToken()
        result = IntakeResult(company=company)

        with self.ctx.locks.hold(company, operation="intake"):
            candidates = self._collect(company, messages, already_processed_message_ids,
                                       token, result)
            if candidates is None:
                result.cancelled = True
                BillSort.print_right("[yellow]Intake cancelled before processing started[/yellow]")
                return result

            result.total = len(candidates)
            BillSort.print_right(f"{company}: {len(candidates)} attachment(s) to process")
            BillSort.set_progress(0, result.total)

            active = self._active_names(company)
            for name in already_processed_canonical_names:
                active.setdefault(name, EXTERNAL_ORIGINAL)

            for i, candidate in enumerate(candidates, 1):
                if token.cancelled:
                    result.cancelled = True
                    BillSort.print_right(f"[yellow]Intake cancelled after {i - 1}/{result.total}[/yellow]")
                    break
                result.decisions.append(self._process(company, candidate, active))
                BillSort.set_progress(i, result.total)

        return result

    # =========================================================================
    # Pass 1
    # =========================================================================

    def _collect(self, company: str, messages: Iterable[MailMessage],
                 already_processed_message_ids: Iterable[str],
                 token: CancellationToken,
                 result: IntakeResult) -> Optional[List[_Candidate]]:
        """Enumerate work without side effects; None if cancelled.

        An attachment is skipped once a buffer or triage row records it, so a
        message whose attachments only partly made it in is picked up again.
        """
        known_messages = set(already_processed_message_ids)
        known = logged_attachments(self.ctx.store, company)
        candidates: List[_Candidate] = []
        for message in messages:
            if token.cancelled:
                return None
            if message.message_id in known_messages:
                continue
            for attachment in message.attachments:
                key = (message.message_id, attachment_key(attachment.attachment_id, attachment.name))
                if key in known:
                    continue
                known.add(key)
                reason = attachment_skip_reason(attachment.name, attachment.mime_type,
                                                attachment.size)
                if reason:
                    result.decisions.append(IntakeDecision(
                        message_id=message.message_id,
                        attachment_name=attachment.name,
                        action=SKIPPED,
                        detail=reason,
                    ))
                    continue
                candidates.append(_Candidate(message, attachment))
        return candidates

    def _active_names(self, company: str) -> Dict[str, int]:
        """canonical name -> row id of the active document holding it."""
        return {
            r.canonical_name: r.row_id
            for r in self.ctx.store.read_all(company, "buffer")
            if r.status == STATUS_ACTIVE and not r.is_duplicate
        }

    # =========================================================================
    # Pass 2
    # =========================================================================

    def _process(self, company: str, candidate: _Candidate,
                 active: Dict[str, int]) -> IntakeDecision:
        message, attachment = candidate.message, candidate.attachment
        classification = self.ctx.classifier.classify(
            attachment.data, attachment.name, attachment.mime_type
        )
        canonical = canonicalize(classification, attachment.name,
                                 today=self.ctx.today(), mime_type=attachment.mime_type)
        reference_date = self._reference_date(classification, message)

        if not classification.is_flow:
            decision = self._to_triage(company, candidate, classification, canonical, reference_date)
        elif canonical in active:
            decision = self._record_duplicate(company, candidate, classification, canonical,
                                              reference_date, active[canonical])
        else:
            decision = self._store(company, candidate, classification, canonical, reference_date)
            if decision.action == STORED:
                active[canonical] = decision.row_id

        self._report(company, decision)
        return decision

    def _reference_date(self, classification: Classification, message: MailMessage) -> date:
        doc_date = parse_date(classification.date)
        if doc_date:
            return doc_date
        if message.date:
            return message.date.date()
        return self.ctx.today()

    def _document_key(self, candidate: _Candidate) -> str:
        attachment = candidate.attachment
        return f"{candidate.message.message_id}/{attachment_key(attachment.attachment_id, attachment.name)}"

    def _to_triage(self, company: str, candidate: _Candidate, classification: Classification,
                   canonical: str, reference_date: date) -> IntakeDecision:
        message, attachment = candidate.message, candidate.attachment
        router = self.ctx.router
        try:
            locator = router.resolve(company, reference_date, FolderKind.BUFFER2)
            file = router.create_in(locator, attachment.data, canonical, attachment.mime_type)
        except StorageError as e:
            return self._failed(candidate, canonical, TransientIOError(
                str(e), company=company, name=canonical, operation="store in Buffer2"))

        ref = self.ctx.driver.ref_for(file)
        unique_id = (lookup_unique_id(self.ctx.store, company, storage_ref=ref)
                     or self.ctx.minter.assign(self._document_key(candidate)))
        try:
            row = self.ctx.store.append_row(company, "buffer2", TriageRecord(
                original_name=attachment.name,
                canonical_name=canonical,
                storage_ref=ref,
                message_id=message.message_id,
                attachment_id=attachment.attachment_id,
                unique_id=unique_id,
                reason=classification.notes,
                invoice_status=classification.invoice_status,
                reference_date=reference_date.isoformat(),
                email_subject=message.subject,
                sender=message.sender,
                created_at=now_stamp(),
            ))
        except sqlite3.Error as e:
            return self._failed(candidate, canonical, ConsistencyError(
                f"stored at {file.path} but triage log not updated: {e}",
                company=company, name=canonical, operation="log triage"))

        return IntakeDecision(
            message_id=message.message_id,
            attachment_name=attachment.name,
            action=TRIAGE,
            canonical_name=canonical,
            unique_id=unique_id,
            row_id=row.row_id,
            detail=f"{classification.invoice_status}: {file.path}",
        )

    def _record_duplicate(self, company: str, candidate: _Candidate,
                          classification: Classification, canonical: str,
                          reference_date: date, original_row: int) -> IntakeDecision:
        message, attachment = candidate.message, candidate.attachment
        original = f"row {original_row}" if original_row != EXTERNAL_ORIGINAL else "an earlier run"
        try:
            row = self.ctx.store.append_row(company, "buffer", BufferRecord(
                original_name=attachment.name,
                canonical_name=canonical,
                invoice_id=classification.invoice_number,
                storage_ref="",
                message_id=message.message_id,
                attachment_id=attachment.attachment_id,
                status=STATUS_ACTIVE,
                reason=f"Duplicate of {original}; needs review",
                repeated_ref=original_row,
                invoice_status=classification.invoice_status,
                reference_date=reference_date.isoformat(),
                email_subject=message.subject,
                sender=message.sender,
                created_at=now_stamp(),
            ))
        except sqlite3.Error as e:
            return self._failed(candidate, canonical, ConsistencyError(
                f"duplicate row not written: {e}",
                company=company, name=canonical, operation="log duplicate"))

        return IntakeDecision(
            message_id=message.message_id,
            attachment_name=attachment.name,
            action=DUPLICATE,
            canonical_name=canonical,
            row_id=row.row_id,
            repeated_ref=original_row,
            detail=f"duplicate of {original}",
        )

    def _store(self, company: str, candidate: _Candidate, classification: Classification,
               canonical: str, reference_date: date) -> IntakeDecision:
        message, attachment = candidate.message, candidate.attachment
        ctx = self.ctx
        created: List[FileInfo] = []
        try:
            active_loc = ctx.router.resolve(company, reference_date, FolderKind.BUFFER_ACTIVE)
            file = ctx.router.create_in(active_loc, attachment.data, canonical, attachment.mime_type)
            created.append(file)
            flow_kind = FLOW_KINDS[classification.invoice_status]
            flow_loc = ctx.router.resolve(company, reference_date, flow_kind)
            flow_file = ctx.router.copy_into(file, flow_loc, canonical)
            created.append(flow_file)
        except StorageError as e:
            self._discard(created)
            return self._failed(candidate, canonical, TransientIOError(
                str(e), company=company, name=canonical, operation="store in Buffer/Active"))

        ref = ctx.driver.ref_for(file)
        flow_ref = ctx.driver.ref_for(flow_file)
        unique_id = (lookup_unique_id(ctx.store, company, storage_ref=ref)
                     or ctx.minter.assign(self._document_key(candidate)))
        try:
            with ctx.store.transaction():
                row = ctx.store.append_row(company, "buffer", BufferRecord(
                    original_name=attachment.name,
                    canonical_name=canonical,
                    invoice_id=classification.invoice_number,
                    storage_ref=ref,
                    message_id=message.message_id,
                    attachment_id=attachment.attachment_id,
                    unique_id=unique_id,
                    status=STATUS_ACTIVE,
                    invoice_status=classification.invoice_status,
                    reference_date=reference_date.isoformat(),
                    email_subject=message.subject,
                    sender=message.sender,
                    created_at=now_stamp(),
                ))
                ctx.store.append_row(company, "main", flow_row(
                    file, ref, ref, unique_id, classification, reference_date,
                    message.message_id, message.subject,
                ))
                ctx.store.append_row(company, classification.invoice_status, flow_row(
                    flow_file, flow_ref, ref, unique_id, classification, reference_date,
                    message.message_id, message.subject,
                ))
        except sqlite3.Error as e:
            return self._failed(candidate, canonical, ConsistencyError(
                f"stored at {file.path} but logs not updated: {e}",
                company=company, name=canonical, operation="log stored bill"))

        return IntakeDecision(
            message_id=message.message_id,
            attachment_name=attachment.name,
            action=STORED,
            canonical_name=canonical,
            unique_id=unique_id,
            row_id=row.row_id,
            detail=f"{file.path} + {flow_file.path}",
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _discard(self, created: List[FileInfo]) -> None:
        """Trash files written for an attachment whose storage failed midway."""
        for file in reversed(created):
            try:
                self.ctx.driver.trash(file)
            except StorageError as e:
                BillSort.print_right(f"  [red]Could not remove partial file {file.path}: {e}[/red]")

    def _failed(self, candidate: _Candidate, canonical: str,
                error: Exception) -> IntakeDecision:
        BillSort.print_right(f"  [red]{error}[/red]")
        return IntakeDecision(
            message_id=candidate.message.message_id,
            attachment_name=candidate.attachment.name,
            action=FAILED,
            canonical_name=canonical,
            detail=str(error),
        )

    def _report(self, company: str, decision: IntakeDecision) -> None:
        BillSort.tally(decision.action)
        colors = {STORED: "green", DUPLICATE: "yellow", TRIAGE: "cyan", FAILED: "red"}
        color = colors.get(decision.action, "white")
        timestamp = datetime.now().strftime("%H:%M")
        BillSort.print_left(
            f"{timestamp} [{color}]{decision.action.upper()}[/{color}] {decision.attachment_name}",
            f"  → {decision.canonical_name or '-'} ({decision.detail})",
        )
        activity_log.log(self.ctx, company, f"INTAKE {decision.action.upper()}",
                         decision.canonical_name or decision.attachment_name, decision.detail,
                         error=decision.detail if decision.action == FAILED else None)
