"""Building log rows from documents."""

from datetime import date, datetime

from storage import FileInfo
from .classification import Classification
from .folders import financial_year, month_name
from .log_store import FlowLogRow
from .naming import parse_canonical


def now_stamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


def flow_row(file: FileInfo, storage_ref: str, source_ref: str, unique_id: str,
             classification: Classification, reference_date: date,
             message_id: str = "", email_subject: str = "") -> FlowLogRow:
    """Projection of a document into the main/inflow/outflow logs."""
    return FlowLogRow(
        file_name=file.name,
        storage_ref=storage_ref,
        source_ref=source_ref,
        unique_id=unique_id,
        message_id=message_id,
        email_subject=email_subject,
        invoice_status=classification.invoice_status,
        vendor_name=classification.vendor_name,
        invoice_number=classification.invoice_number,
        amount=classification.amount,
        invoice_date=classification.date,
        gst=classification.gst,
        tds=classification.tds,
        other_tax=classification.other_tax,
        financial_year=financial_year(reference_date),
        month=month_name(reference_date),
        size=file.size,
        mime_type=file.mime_type or "",
        logged_at=now_stamp(),
    )


def classification_from_name(canonical_name: str, invoice_status: str,
                             notes: str = "") -> Classification:
    """Recover the fields encoded in a canonical filename."""
    parts = parse_canonical(canonical_name)
    if parts is None:
        return Classification(invoice_status=invoice_status, notes=notes, source="filename")
    return Classification(
        invoice_status=invoice_status,
        vendor_name=parts.vendor,
        invoice_number=parts.invoice,
        amount=parts.amount,
        date=parts.date,
        notes=notes,
        is_financial_document=True,
        source="filename",
    )
