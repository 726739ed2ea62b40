"""Repair workflow for stale storage references in the buffer log."""

from dataclasses import dataclass
from datetime import datetime

from billsort import BillSort
from storage import StorageError
from .context import RunContext
from .log_store import REF_NOT_FOUND, STATUS_ACTIVE
from .naming import parse_date


@dataclass
class RepairSummary:
    checked: int = 0
    relinked: int = 0
    renamed: int = 0
    not_found: int = 0
    errors: int = 0


def _log_repair(name: str, action: str) -> None:
    """Log a repair action to the left panel."""
    timestamp = datetime.now().strftime("%H:%M")
    BillSort.print_left(f"{timestamp} {name}", f"  {action}")


def repair_buffer(ctx: RunContext, company: str) -> RepairSummary:
    """Re-resolve every active document of a company and fix its references.

    - Rewrites storage_ref when the file was found elsewhere
    - Adopts the file's name when it was renamed in storage
    - Marks storage_ref NOT_FOUND when no location holds the file
    - Skips duplicate rows, which own no file

    Raises:
        LockTimeoutError: If the company lock can't be acquired
    """
    summary = RepairSummary()
    with ctx.locks.hold(company, operation="repair"):
        rows = ctx.store.find_rows(company, "buffer", lambda row: (
            row.status == STATUS_ACTIVE and not row.is_duplicate))
        BillSort.print_right(f"Checking {len(rows)} active document(s) for {company}...")

        for i, record in enumerate(rows, 1):
            BillSort.set_progress(i, len(rows))
            summary.checked += 1
            try:
                resolution = ctx.resolver.resolve(
                    company, record.canonical_name, record.storage_ref,
                    reference_date=parse_date(record.reference_date),
                )
            except StorageError as e:
                summary.errors += 1
                BillSort.print_right(f"  [red]Error resolving {record.canonical_name}: {e}[/red]")
                continue

            if resolution is None:
                if record.storage_ref != REF_NOT_FOUND:
                    ctx.store.update_row(company, "buffer", record.row_id, storage_ref=REF_NOT_FOUND)
                    _log_repair(record.canonical_name, "[red]Not found in any expected folder[/red]")
                summary.not_found += 1
                continue

            ref = ctx.driver.ref_for(resolution.file)
            if ref == record.storage_ref and resolution.name_matches:
                continue

            changes = {"storage_ref": ref}
            if not resolution.name_matches:
                changes["canonical_name"] = resolution.file.name
                summary.renamed += 1
            ctx.store.update_row(company, "buffer", record.row_id, **changes)

            main_changes = {"storage_ref": ref, "source_ref": ref}
            if not resolution.name_matches:
                main_changes["file_name"] = resolution.file.name
            for row in ctx.store.find_rows(company, "main", lambda row: (
                    (record.unique_id and row.unique_id == record.unique_id)
                    or row.storage_ref == record.storage_ref)):
                ctx.store.update_row(company, "main", row.row_id, **main_changes)

            summary.relinked += 1
            _log_repair(resolution.file.name, f"[green]Relinked → {resolution.file.path}[/green]")

    BillSort.print_right(
        f"Repair complete: {summary.checked} checked, {summary.relinked} relinked, "
        f"{summary.renamed} renamed, {summary.not_found} not found, {summary.errors} errors"
    )
    return summary
