"""Status transitions for logged bills.

Transitions run under the company lock and in two phases. The file phase
moves or copies files; if it fails, no log is touched. The log phase
reconciles the buffer, main and flow logs; if it fails, the file stays
where it is (file location is the ground truth) and the result carries a
consistency error. The status field is written last, so a failed
transition leaves the visible status at its prior value.

    Active  -> Delete   delete()
    Delete  -> Active   activate()
    Pending -> Yes/No   accept_triage()
"""

import sqlite3
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from billsort import BillSort
from storage import FileInfo, StorageError
from . import activity_log
from .classification import OUTFLOW, Classification
from .context import RunContext
from .errors import (
    ConsistencyError,
    ErrorKind,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from .folders import FLOW_KINDS, FolderKind, shift_financial_year
from .log_store import (
    BufferRecord,
    REF_DELETED,
    REF_NOT_FOUND,
    RELEVANCE_NO,
    RELEVANCE_YES,
    STATUS_ACTIVE,
    STATUS_DELETE,
)
from .naming import lookup_unique_id, parse_date
from .records import classification_from_name, flow_row, now_stamp
from .recovery import SearchHint

# Log phase failures: database errors, or a row that vanished mid-transition
_LOG_ERRORS = (sqlite3.Error, LookupError)

FLOW_LOGS = ("inflow", "outflow")


@dataclass
class FieldChange:
    """An operator edit of a status or relevance field."""
    company: str
    log_kind: str
    row_id: int
    field: str
    old_value: str
    new_value: str
    reason: str = ""


@dataclass
class TransitionResult:
    """Outcome of one transition.

    ``status`` is the field value after the call: the new value on success,
    the prior value on failure.
    ``log_kind`` names the log holding the row once it has been found; a
    failure is then recorded in that row's ``last_error``.
    """
    ok: bool
    transition: str
    company: str
    row_id: int
    log_kind: str = ""
    status: str = ""
    error_kind: Optional[str] = None
    message: str = ""
    steps: List[str] = field(default_factory=list)


class LifecycleMachine:
    """Applies Active/Delete and triage transitions for one run context."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def on_field_changed(self, change: FieldChange) -> TransitionResult:
        """Dispatch an operator edit to the matching transition."""
        transition = f"{change.log_kind}.{change.field}: {change.old_value or 'Pending'} -> {change.new_value}"
        if change.log_kind == "buffer" and change.field == "status":
            if change.new_value == STATUS_DELETE:
                return self.delete(change.company, change.row_id, change.reason)
            if change.new_value == STATUS_ACTIVE:
                return self.activate(change.company, change.row_id, change.reason)
        elif change.log_kind == "buffer2" and change.field == "relevance":
            return self.accept_triage(change.company, change.row_id, change.new_value, change.reason)
        return self._finish(TransitionResult(
            ok=False, transition=transition, company=change.company, row_id=change.row_id,
            status=change.old_value, error_kind=ErrorKind.VALIDATION,
            message=f"No transition for {transition}",
        ))

    # =========================================================================
    # Active -> Delete
    # =========================================================================

    def delete(self, company: str, row_id: int, reason: str) -> TransitionResult:
        """Archive a document into Buffer/Deleted and drop its main/flow rows.

        Raises:
            LockTimeoutError: If the company lock can't be acquired
        """
        result = TransitionResult(ok=False, transition="Active -> Delete",
                                  company=company, row_id=row_id)
        with self.ctx.locks.hold(company, operation="delete"):
            record = self._buffer_row(company, row_id, result)
            if record is None:
                return self._finish(result)
            result.status = record.status
            if not (reason or "").strip():
                return self._fail(result, ErrorKind.VALIDATION, str(ValidationError(
                    "A reason is required to delete a document",
                    company=company, name=record.canonical_name, operation="delete")))
            if record.status == STATUS_DELETE:
                return self._fail(result, ErrorKind.PRECONDITION, "Document is already deleted")

            if record.is_duplicate:
                return self._delete_duplicate(result, record, reason)
            return self._delete_document(result, record, reason)

    def _delete_duplicate(self, result: TransitionResult, record: BufferRecord,
                          reason: str) -> TransitionResult:
        try:
            self.ctx.store.update_row(result.company, "buffer", record.row_id,
                                      status=STATUS_DELETE, storage_ref=REF_DELETED, reason=reason,
                                      last_error="")
        except _LOG_ERRORS as e:
            return self._fail(result, ErrorKind.CONSISTENCY, str(e))
        result.steps.append("duplicate row marked deleted (no file)")
        return self._succeed(result, STATUS_DELETE, record.canonical_name)

    def _delete_document(self, result: TransitionResult, record: BufferRecord,
                         reason: str) -> TransitionResult:
        ctx, company = self.ctx, result.company
        ref_date = self._reference_date(record)

        try:
            resolution = ctx.resolver.resolve(company, record.canonical_name, record.storage_ref,
                                              reference_date=ref_date,
                                              hint=self._hint(company, record))
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name, operation="resolve")))
        if resolution is None:
            return self._not_found(result, "buffer", record.row_id, record.canonical_name)
        result.steps.append(f"resolved {resolution.file.path}")

        # File phase
        try:
            deleted_loc = ctx.router.resolve(company, ref_date, FolderKind.BUFFER_DELETED)
            moved = ctx.router.move_into(resolution.file, deleted_loc)
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name,
                operation="move to Buffer/Deleted")))
        result.steps.append(f"moved to {moved.path}")
        self._trash_flow_copies(result, record, ref_date,
                                keep={ctx.driver.ref_for(moved), ctx.driver.ref_for(resolution.file)})

        # Log phase
        refs = {record.storage_ref, ctx.driver.ref_for(resolution.file)} - {""}
        try:
            with ctx.store.transaction():
                removed = 0
                for kind in ("main",) + FLOW_LOGS:
                    removed += ctx.store.delete_rows(
                        company, kind, lambda row: self._describes(row, record.unique_id, refs))
                ctx.store.update_row(company, "buffer", record.row_id,
                                     status=STATUS_DELETE, storage_ref=REF_DELETED,
                                     archived_ref=ctx.driver.ref_for(moved), reason=reason,
                                     last_error="")
        except _LOG_ERRORS as e:
            return self._fail(result, ErrorKind.CONSISTENCY, str(ConsistencyError(
                f"file moved to {moved.path} but logs not reconciled: {e}",
                company=company, name=record.canonical_name, operation="delete")))
        result.steps.append(f"removed {removed} main/flow row(s)")
        return self._succeed(result, STATUS_DELETE, record.canonical_name)

    def _trash_flow_copies(self, result: TransitionResult, record: BufferRecord,
                           ref_date: date, keep: set) -> None:
        """Trash the inflow/outflow copies of a document being deleted."""
        ctx, company = self.ctx, result.company
        copies: Dict[str, FileInfo] = {}
        refs = {record.storage_ref} - {""}
        for kind in FLOW_LOGS:
            for row in ctx.store.find_rows(company, kind,
                                           lambda row: self._describes(row, record.unique_id, refs)):
                file = ctx.driver.get_file(row.storage_ref) if row.storage_ref else None
                if file is not None:
                    copies[ctx.driver.ref_for(file)] = file
        for kind in FLOW_KINDS.values():
            folder = ctx.router.locate(company, ref_date, kind).path
            if ctx.driver.folder_exists(folder):
                for file in ctx.driver.find_by_name(folder, record.canonical_name):
                    copies[ctx.driver.ref_for(file)] = file

        for ref, file in copies.items():
            if ref in keep:
                continue
            try:
                ctx.driver.trash(file)
                result.steps.append(f"trashed flow copy {file.path}")
            except StorageError as e:
                result.steps.append(f"could not trash flow copy {file.path}: {e}")

    # =========================================================================
    # Delete -> Active
    # =========================================================================

    def activate(self, company: str, row_id: int, reason: str) -> TransitionResult:
        """Restore a deleted document, re-classify it and re-log it.

        Raises:
            LockTimeoutError: If the company lock can't be acquired
        """
        result = TransitionResult(ok=False, transition="Delete -> Active",
                                  company=company, row_id=row_id)
        with self.ctx.locks.hold(company, operation="activate"):
            record = self._buffer_row(company, row_id, result)
            if record is None:
                return self._finish(result)
            result.status = record.status
            if not (reason or "").strip():
                return self._fail(result, ErrorKind.VALIDATION, str(ValidationError(
                    "A reason is required to reactivate a document",
                    company=company, name=record.canonical_name, operation="activate")))
            if record.status == STATUS_ACTIVE:
                return self._fail(result, ErrorKind.PRECONDITION, "Document is already active")
            if record.is_duplicate:
                return self._fail(result, ErrorKind.PRECONDITION,
                                  f"Row is a duplicate of row {record.repeated_ref}; "
                                  f"reactivate the original instead")
            holder = self._active_holder(company, record.canonical_name, exclude=record.row_id)
            if holder is not None:
                return self._fail(result, ErrorKind.PRECONDITION,
                                  f"{record.canonical_name} is already active in row {holder.row_id}")
            return self._activate_document(result, record, reason)

    def _activate_document(self, result: TransitionResult, record: BufferRecord,
                           reason: str) -> TransitionResult:
        ctx, company = self.ctx, result.company
        ref_date = self._reference_date(record)

        try:
            resolution = ctx.resolver.resolve(company, record.canonical_name,
                                              record.archived_ref or record.storage_ref,
                                              reference_date=ref_date,
                                              hint=self._hint(company, record))
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name, operation="resolve")))
        if resolution is None:
            return self._not_found(result, "buffer", record.row_id, record.canonical_name)
        result.steps.append(f"resolved {resolution.file.path}")

        # File phase
        try:
            active_loc = ctx.router.resolve(company, ref_date, FolderKind.BUFFER_ACTIVE)
            file = ctx.router.move_into(resolution.file, active_loc)
            data = ctx.driver.read_bytes(file)
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name,
                operation="move to Buffer/Active")))
        result.steps.append(f"moved to {file.path}")

        classification = ctx.classifier.classify(data, file.name, file.mime_type)
        result.steps.append(f"re-classified as {classification.invoice_status} ({classification.source})")

        flow_file = None
        if classification.is_flow:
            try:
                flow_loc = ctx.router.resolve(company, ref_date, FLOW_KINDS[classification.invoice_status])
                flow_file = ctx.router.copy_into(file, flow_loc, record.canonical_name)
            except StorageError as e:
                self._move_back(result, file, resolution.file.folder)
                return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                    str(e), company=company, name=record.canonical_name,
                    operation=f"copy to {classification.invoice_status}")))
            result.steps.append(f"copied to {flow_file.path}")

        # Log phase
        ref = ctx.driver.ref_for(file)
        try:
            with ctx.store.transaction():
                unique_id = (record.unique_id
                             or lookup_unique_id(ctx.store, company, storage_ref=ref,
                                                 canonical_name=record.canonical_name)
                             or ctx.minter.assign(f"{company}/buffer/{record.row_id}"))
                refs = {ref, record.storage_ref, record.archived_ref} - {""}
                for kind in ("main",) + FLOW_LOGS:
                    ctx.store.delete_rows(company, kind, lambda row: self._describes(row, unique_id, refs))
                ctx.store.append_row(company, "main", flow_row(
                    file, ref, ref, unique_id, classification, ref_date,
                    record.message_id, record.email_subject))
                if flow_file is not None:
                    ctx.store.append_row(company, classification.invoice_status, flow_row(
                        flow_file, ctx.driver.ref_for(flow_file), ref, unique_id, classification,
                        ref_date, record.message_id, record.email_subject))
                ctx.store.update_row(company, "buffer", record.row_id,
                                     status=STATUS_ACTIVE, storage_ref=ref, archived_ref="",
                                     reason=reason, unique_id=unique_id, last_error="",
                                     invoice_status=classification.invoice_status)
        except _LOG_ERRORS as e:
            return self._fail(result, ErrorKind.CONSISTENCY, str(ConsistencyError(
                f"file moved to {file.path} but logs not reconciled: {e}",
                company=company, name=record.canonical_name, operation="activate")))
        result.steps.append(f"logged as {unique_id}")
        return self._succeed(result, STATUS_ACTIVE, record.canonical_name)

    # =========================================================================
    # Triage: Pending -> Yes/No
    # =========================================================================

    def accept_triage(self, company: str, row_id: int, relevance: str,
                      reason: str = "") -> TransitionResult:
        """Promote a triage document into the active buffer.

        Yes and No both promote the file and both log it as outflow; they
        differ only in the audit reason.

        Raises:
            LockTimeoutError: If the company lock can't be acquired
        """
        result = TransitionResult(ok=False, transition=f"Pending -> {relevance or '?'}",
                                  company=company, row_id=row_id)
        with self.ctx.locks.hold(company, operation="accept triage"):
            if not self._known_company(result):
                return self._finish(result)
            record = self.ctx.store.get_row(company, "buffer2", row_id)
            if record is None:
                return self._fail(result, ErrorKind.NOT_FOUND, f"No triage row {row_id}")
            result.log_kind = "buffer2"
            result.status = record.relevance
            if relevance not in (RELEVANCE_YES, RELEVANCE_NO):
                return self._fail(result, ErrorKind.VALIDATION, str(ValidationError(
                    f"Relevance must be {RELEVANCE_YES} or {RELEVANCE_NO}, got {relevance!r}",
                    company=company, name=record.canonical_name, operation="accept triage")))
            if record.relevance:
                return self._fail(result, ErrorKind.PRECONDITION,
                                  f"Triage row already decided ({record.relevance})")

            reason = reason or f"Accepted from triage (relevance {relevance})"
            ref_date = self._reference_date(record)
            try:
                file = self._locate_triage_file(company, record, ref_date)
            except StorageError as e:
                return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                    str(e), company=company, name=record.canonical_name, operation="resolve")))
            if file is None:
                return self._not_found(result, "buffer2", record.row_id, record.canonical_name)

            holder = self._active_holder(company, record.canonical_name)
            if holder is not None:
                return self._accept_as_duplicate(result, record, file, holder, relevance,
                                                 reason, ref_date)
            return self._accept_document(result, record, file, relevance, reason, ref_date)

    def _locate_triage_file(self, company: str, record, ref_date: date) -> Optional[FileInfo]:
        ctx = self.ctx
        if record.storage_ref and record.storage_ref not in (REF_DELETED, REF_NOT_FOUND):
            file = ctx.driver.get_file(record.storage_ref)
            if file is not None:
                return file
        for years in (0, -1, 1):
            folder = ctx.router.locate(company, shift_financial_year(ref_date, years),
                                       FolderKind.BUFFER2).path
            if ctx.driver.folder_exists(folder):
                matches = ctx.driver.find_by_name(folder, record.canonical_name)
                if matches:
                    return matches[0]
        return None

    def _accept_as_duplicate(self, result: TransitionResult, record, file: FileInfo,
                             holder: BufferRecord, relevance: str, reason: str,
                             ref_date: date) -> TransitionResult:
        """The name is already active: archive the file and log a duplicate row."""
        ctx, company = self.ctx, result.company
        try:
            deleted_loc = ctx.router.resolve(company, ref_date, FolderKind.BUFFER_DELETED)
            moved = ctx.router.move_into(file, deleted_loc)
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name,
                operation="move to Buffer/Deleted")))
        result.steps.append(f"{record.canonical_name} already active in row {holder.row_id}; "
                            f"moved to {moved.path}")

        ref = ctx.driver.ref_for(moved)
        try:
            with ctx.store.transaction():
                ctx.store.append_row(company, "buffer", BufferRecord(
                    original_name=record.original_name,
                    canonical_name=record.canonical_name,
                    storage_ref="",
                    archived_ref=ref,
                    message_id=record.message_id,
                    attachment_id=record.attachment_id,
                    status=STATUS_ACTIVE,
                    reason=f"Duplicate of row {holder.row_id}; {reason}",
                    repeated_ref=holder.row_id,
                    invoice_status=OUTFLOW,
                    reference_date=record.reference_date,
                    email_subject=record.email_subject,
                    sender=record.sender,
                    created_at=now_stamp(),
                ))
                ctx.store.update_row(company, "buffer2", record.row_id, relevance=relevance,
                                     storage_ref=ref, reason=reason, last_error="")
        except _LOG_ERRORS as e:
            return self._fail(result, ErrorKind.CONSISTENCY, str(ConsistencyError(
                f"file moved to {moved.path} but logs not reconciled: {e}",
                company=company, name=record.canonical_name, operation="accept triage")))
        return self._succeed(result, relevance, record.canonical_name)

    def _accept_document(self, result: TransitionResult, record, file: FileInfo,
                         relevance: str, reason: str, ref_date: date) -> TransitionResult:
        ctx, company = self.ctx, result.company
        try:
            active_loc = ctx.router.resolve(company, ref_date, FolderKind.BUFFER_ACTIVE)
            moved = ctx.router.move_into(file, active_loc)
        except StorageError as e:
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name,
                operation="move to Buffer/Active")))
        result.steps.append(f"moved to {moved.path}")
        try:
            outflow_loc = ctx.router.resolve(company, ref_date, FolderKind.OUTFLOW)
            flow_file = ctx.router.copy_into(moved, outflow_loc, record.canonical_name)
        except StorageError as e:
            self._move_back(result, moved, file.folder)
            return self._fail(result, ErrorKind.TRANSIENT_IO, str(TransientIOError(
                str(e), company=company, name=record.canonical_name, operation="copy to outflow")))
        result.steps.append(f"copied to {flow_file.path}")

        # Triage acceptance always logs as outflow, whatever the relevance
        classification: Classification = classification_from_name(record.canonical_name, OUTFLOW,
                                                                   notes=reason)
        ref = ctx.driver.ref_for(moved)
        try:
            with ctx.store.transaction():
                unique_id = (record.unique_id
                             or lookup_unique_id(ctx.store, company, storage_ref=ref)
                             or ctx.minter.assign(f"{company}/buffer2/{record.row_id}"))
                refs = {ref, record.storage_ref} - {"", REF_NOT_FOUND, REF_DELETED}
                for kind in ("main",) + FLOW_LOGS:
                    ctx.store.delete_rows(company, kind, lambda row: self._describes(row, unique_id, refs))
                ctx.store.append_row(company, "main", flow_row(
                    moved, ref, ref, unique_id, classification, ref_date,
                    record.message_id, record.email_subject))
                ctx.store.append_row(company, "outflow", flow_row(
                    flow_file, ctx.driver.ref_for(flow_file), ref, unique_id, classification,
                    ref_date, record.message_id, record.email_subject))

                logged = ctx.store.find_rows(company, "buffer", lambda row: not row.is_duplicate and (
                    row.unique_id == unique_id or row.storage_ref in refs))
                changes = dict(status=STATUS_ACTIVE, storage_ref=ref, archived_ref="", reason=reason,
                               unique_id=unique_id, invoice_status=OUTFLOW, last_error="")
                if logged:
                    ctx.store.update_row(company, "buffer", logged[0].row_id, **changes)
                else:
                    ctx.store.append_row(company, "buffer", BufferRecord(
                        original_name=record.original_name,
                        canonical_name=record.canonical_name,
                        invoice_id=classification.invoice_number,
                        message_id=record.message_id,
                        attachment_id=record.attachment_id,
                        reference_date=record.reference_date,
                        email_subject=record.email_subject,
                        sender=record.sender,
                        created_at=now_stamp(),
                        **changes,
                    ))
                ctx.store.update_row(company, "buffer2", record.row_id, relevance=relevance,
                                     storage_ref=ref, reason=reason, last_error="")
        except _LOG_ERRORS as e:
            return self._fail(result, ErrorKind.CONSISTENCY, str(ConsistencyError(
                f"file moved to {moved.path} but logs not reconciled: {e}",
                company=company, name=record.canonical_name, operation="accept triage")))
        result.steps.append(f"logged as {unique_id} (outflow)")
        return self._succeed(result, relevance, record.canonical_name)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _known_company(self, result: TransitionResult) -> bool:
        if result.company in self.ctx.router.companies:
            return True
        result.error_kind = ErrorKind.VALIDATION
        result.message = f"Unknown company: {result.company}"
        return False

    def _buffer_row(self, company: str, row_id: int,
                    result: TransitionResult) -> Optional[BufferRecord]:
        if not self._known_company(result):
            return None
        record = self.ctx.store.get_row(company, "buffer", row_id)
        if record is None:
            result.error_kind = ErrorKind.NOT_FOUND
            result.message = f"No buffer row {row_id}"
        else:
            result.log_kind = "buffer"
        return record

    def _active_holder(self, company: str, canonical_name: str,
                       exclude: Optional[int] = None) -> Optional[BufferRecord]:
        rows = self.ctx.store.find_rows(company, "buffer", lambda row: (
            row.status == STATUS_ACTIVE and not row.is_duplicate
            and row.canonical_name == canonical_name and row.row_id != exclude))
        return rows[0] if rows else None

    def _reference_date(self, record) -> date:
        return parse_date(record.reference_date) or self.ctx.today()

    def _hint(self, company: str, record: BufferRecord) -> SearchHint:
        """Search hint from the document's main-log row, if it still has one."""
        rows = self.ctx.store.find_rows(company, "main", lambda row: bool(
            record.unique_id) and row.unique_id == record.unique_id)
        if rows:
            row = rows[0]
            return SearchHint(vendor=row.vendor_name, invoice_number=row.invoice_number,
                              amount=row.amount)
        return SearchHint(invoice_number=record.invoice_id)

    @staticmethod
    def _describes(row, unique_id: str, refs: set) -> bool:
        if unique_id and row.unique_id == unique_id:
            return True
        return row.storage_ref in refs or row.source_ref in refs

    def _move_back(self, result: TransitionResult, file: FileInfo, folder: str) -> None:
        try:
            self.ctx.driver.move_file(file, folder)
            result.steps.append(f"moved back to {folder}")
        except StorageError as e:
            result.steps.append(f"could not move back to {folder}: {e}")

    def _not_found(self, result: TransitionResult, kind: str, row_id: int,
                   name: str) -> TransitionResult:
        """Fail closed: mark the reference NOT_FOUND and leave other logs alone."""
        error = NotFoundError("Document not found in any expected location",
                              company=result.company, name=name, operation=result.transition)
        try:
            self.ctx.store.update_row(result.company, kind, row_id, storage_ref=REF_NOT_FOUND)
        except _LOG_ERRORS as e:
            result.steps.append(f"could not mark {REF_NOT_FOUND}: {e}")
        return self._fail(result, ErrorKind.NOT_FOUND, str(error))

    def _fail(self, result: TransitionResult, kind: str, message: str) -> TransitionResult:
        result.ok = False
        result.error_kind = kind
        result.message = message
        if result.log_kind:
            try:
                self.ctx.store.update_row(result.company, result.log_kind, result.row_id,
                                          last_error=f"{kind}: {message}")
            except _LOG_ERRORS as e:
                result.steps.append(f"could not record the error: {e}")
        return self._finish(result)

    def _succeed(self, result: TransitionResult, status: str, name: str) -> TransitionResult:
        result.ok = True
        result.status = status
        result.message = name
        return self._finish(result)

    def _finish(self, result: TransitionResult) -> TransitionResult:
        if result.ok:
            BillSort.print_left(
                f"[green]{result.transition}[/green] row {result.row_id}",
                f"  → {result.message}",
            )
        else:
            BillSort.print_left(
                f"[red]{result.transition} failed[/red] row {result.row_id}",
                f"  → {result.error_kind}: {result.message}",
            )
        for step in result.steps:
            BillSort.print_right(f"  {step}")
        activity_log.log(self.ctx, result.company, result.transition.upper(),
                         f"row {result.row_id}", "; ".join(result.steps) or result.message,
                         error=None if result.ok else result.message)
        return result
