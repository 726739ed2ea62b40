"""Classification of attachments as inflow/outflow bills.

Wraps the AI classifier with retries and rule-based validation, and falls
back to a local heuristic extractor whenever the classifier is unavailable.
Raw classifier output is never used for routing without validation.
"""

import io
import os
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from pypdf import PdfReader

from billsort import BillSort
from models import Classifier, ClassifierError
from utils.retry import retry_on_transient_error, is_transient_network_error
from .naming import parse_date, sanitize_amount

INFLOW = "inflow"
OUTFLOW = "outflow"
IRRELEVANT = "irrelevant"
UNKNOWN = "unknown"
INVOICE_STATUSES = (INFLOW, OUTFLOW, IRRELEVANT, UNKNOWN)

NOT_AVAILABLE = "N/A"

CLASSIFIER_ATTEMPTS = 2

INVOICE_DOCUMENT_TYPES = ("invoice", "bill", "receipt", "credit note", "debit note")

NON_INVOICE_FILENAME_RE = re.compile(
    r'(?<![a-z])(statement|report|contract|agreement|proposal|quotation|quote|'
    r'presentation|resume|cv|newsletter|brochure|catalog|catalogue|payslip|'
    r'policy|manual|minutes)(?![a-z])'
)

_INFLOW_RE = re.compile(r'receiv|income|sale|credit|inflow')
_OUTFLOW_RE = re.compile(r'pay|expense|purchase|bill|debit|cost|outflow')

FILENAME_STOPWORDS = {
    "a", "an", "and", "attachment", "bill", "copy", "doc", "document", "file",
    "final", "for", "from", "image", "img", "inv", "invoice", "new", "no",
    "number", "of", "page", "pdf", "receipt", "scan", "scanned", "the", "to",
}

MAX_HEURISTIC_PAGES = 5


@dataclass
class Classification:
    """Validated classification of one document."""
    invoice_status: str = UNKNOWN
    vendor_name: str = NOT_AVAILABLE
    invoice_number: str = NOT_AVAILABLE
    amount: str = NOT_AVAILABLE
    date: str = NOT_AVAILABLE
    gst: str = NOT_AVAILABLE
    tds: str = NOT_AVAILABLE
    other_tax: str = NOT_AVAILABLE
    notes: str = ""
    is_financial_document: bool = False
    document_type: str = ""
    invoice_count: int = 1
    source: str = "classifier"

    @property
    def is_flow(self) -> bool:
        return self.invoice_status in (INFLOW, OUTFLOW)


# =============================================================================
# Raw output normalization
# =============================================================================

def _text(raw: Dict[str, Any], *keys: str) -> str:
    """First non-empty value among keys (case-insensitive), as a string."""
    lowered = {str(k).lower(): v for k, v in raw.items()}
    for key in keys:
        value = lowered.get(key.lower())
        if value is not None and str(value).strip():
            return str(value).strip()
    return NOT_AVAILABLE


def _is_available(value: Optional[str]) -> bool:
    return bool(value) and value.strip().upper() not in (NOT_AVAILABLE, "NA", "NONE", "NULL", "UNKNOWN")


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "yes", "1", "y")


def parse_amount(value: Optional[str]) -> float:
    """Numeric value of an amount string, 0.0 if there is none."""
    normalized = sanitize_amount(value)
    try:
        return float(normalized) if normalized else 0.0
    except ValueError:
        return 0.0


def normalize_status(value: Any, is_financial: bool) -> str:
    """Restrict a classifier status to inflow/outflow/irrelevant/unknown."""
    status = str(value or "").strip().lower()
    if status in INVOICE_STATUSES:
        return status
    if _INFLOW_RE.search(status):
        return INFLOW
    if _OUTFLOW_RE.search(status):
        return OUTFLOW
    # Ambiguous ("mixed", blank, free text): most business attachments are costs
    return OUTFLOW if is_financial else IRRELEVANT


def classification_from_raw(raw: Dict[str, Any]) -> Classification:
    """Map the provider's JSON keys onto a Classification (not yet validated)."""
    if "isFinancialDocument" in raw:
        is_financial = _as_bool(raw["isFinancialDocument"])
    else:
        is_financial = str(raw.get("invoiceStatus") or "").strip().lower() in (INFLOW, OUTFLOW)
    date_text = _text(raw, "date", "invoiceDate")
    parsed_date = parse_date(date_text)
    try:
        invoice_count = int(raw.get("numberOfInvoices") or raw.get("numberofinvoices") or 1)
    except (TypeError, ValueError):
        invoice_count = 1

    notes = _text(raw, "na", "notes")
    return Classification(
        invoice_status=normalize_status(raw.get("invoiceStatus"), is_financial),
        vendor_name=_text(raw, "vendorName", "vendor"),
        invoice_number=_text(raw, "invoiceNumber", "invoiceNo"),
        amount=_text(raw, "amount", "total"),
        date=parsed_date.isoformat() if parsed_date else date_text,
        gst=_text(raw, "gst", "vat"),
        tds=_text(raw, "tds"),
        other_tax=_text(raw, "ot", "otherTax"),
        notes="" if notes == NOT_AVAILABLE else notes,
        is_financial_document=is_financial,
        document_type=_text(raw, "documentType", "type").lower(),
        invoice_count=max(invoice_count, 1),
        source="classifier",
    )


# =============================================================================
# Validation
# =============================================================================

def validation_failures(classification: Classification, filename: str) -> List[str]:
    """Reasons a document may not be routed as a bill (empty list = valid)."""
    failures = []
    if not _is_available(classification.invoice_number):
        failures.append("missing invoice number")
    if parse_amount(classification.amount) <= 0:
        failures.append("amount is not positive")
    if parse_date(classification.date) is None:
        failures.append("date is not parseable")
    if not _is_available(classification.vendor_name):
        failures.append("missing vendor name")

    doc_type = classification.document_type
    if _is_available(doc_type):
        if not any(kind in doc_type for kind in INVOICE_DOCUMENT_TYPES):
            failures.append(f"document type '{doc_type}' is not a bill")
    elif not classification.is_financial_document:
        failures.append("not a financial document")

    marker = NON_INVOICE_FILENAME_RE.search(os.path.basename(filename or "").lower().replace('_', ' '))
    if marker:
        failures.append(f"filename looks like a {marker.group(1)}")
    return failures


def apply_validation(classification: Classification, filename: str) -> Classification:
    """Downgrade a classification to irrelevant if any rule fails."""
    failures = validation_failures(classification, filename)
    if not failures or classification.invoice_status == IRRELEVANT:
        return classification
    note = "; ".join(failures)
    notes = f"{classification.notes}; {note}" if classification.notes else note
    return replace(classification, invoice_status=IRRELEVANT, notes=notes)


# =============================================================================
# Heuristic fallback
# =============================================================================

_LABELED_DATE_RE = re.compile(
    r'(?:invoice|bill)?\s*date\s*[:\-]?\s*([0-9]{1,4}[/\-.][0-9]{1,2}[/\-.][0-9]{2,4}'
    r'|[0-9]{1,2}\s+[A-Za-z]{3,9},?\s+[0-9]{4}|[A-Za-z]{3,9}\s+[0-9]{1,2},?\s+[0-9]{4})',
    re.IGNORECASE,
)
_ANY_DATE_RE = re.compile(
    r'\b(\d{4}-\d{2}-\d{2}|\d{1,2}/\d{1,2}/\d{4}|\d{1,2}\s+[A-Za-z]{3,9}\s+\d{4}'
    r'|[A-Za-z]{3,9}\s+\d{1,2},\s*\d{4})\b'
)
_INVOICE_NO_RE = re.compile(
    r'(?:invoice|bill)\s*(?:no\.?|number|num|#)\s*[:#]?\s*([A-Za-z0-9][A-Za-z0-9\-/]+)',
    re.IGNORECASE,
)
_TOTAL_RE = re.compile(
    r'(?:grand\s+total|total\s+due|amount\s+due|balance\s+due|amount\s+payable|total)'
    r'\s*[:\-]?\s*(?:[A-Z]{3}|[$€£¥₹]|Rs\.?)?\s*([0-9][0-9,]*(?:\.[0-9]{1,2})?)',
    re.IGNORECASE,
)
_VENDOR_RE = re.compile(
    r'^\s*(?:from|billed\s+by|vendor|supplier|seller)\s*[:\-]\s*(.+)$',
    re.IGNORECASE | re.MULTILINE,
)


def extract_text(data: bytes, mime_type: Optional[str], filename: str) -> str:
    """Best-effort plain text of a PDF or text attachment."""
    mime_type = (mime_type or "").lower()
    lower_name = (filename or "").lower()
    if mime_type == "application/pdf" or lower_name.endswith(".pdf") or data[:5] == b"%PDF-":
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = reader.pages[:MAX_HEURISTIC_PAGES]
            return "\n".join(page.extract_text() or "" for page in pages)
        except Exception as e:
            BillSort.print_right(f"  [yellow]Could not read PDF text from {filename}: {e}[/yellow]")
            return ""
    if mime_type.startswith("text/") or lower_name.endswith((".txt", ".csv", ".html", ".htm")):
        return data.decode("utf-8", errors="ignore")
    return ""


def vendor_from_filename(filename: str) -> str:
    """Two to four meaningful filename tokens, title-cased."""
    stem, _ = os.path.splitext(os.path.basename(filename or ""))
    tokens = [
        t for t in re.split(r'[^A-Za-z0-9]+', stem.lower())
        if len(t) > 1 and not t.isdigit() and t not in FILENAME_STOPWORDS
    ]
    return " ".join(t.capitalize() for t in tokens[:4])


def _first_line_vendor(text: str) -> Optional[str]:
    for line in text.splitlines()[:10]:
        line = line.strip()
        if 3 <= len(line) <= 60 and re.search(r'[A-Za-z]{3}', line) \
                and not re.search(r'invoice|bill|receipt|date|page', line, re.IGNORECASE):
            return line
    return None


def heuristic_classify(data: bytes, filename: str,
                       mime_type: Optional[str] = None) -> Classification:
    """Classify without the AI service.

    Never routes to a flow folder: the result is "unknown" if all four key
    fields were found in the text, otherwise "irrelevant".
    """
    text = extract_text(data, mime_type, filename)

    date_match = _LABELED_DATE_RE.search(text) or _ANY_DATE_RE.search(text)
    parsed_date = parse_date(date_match.group(1)) if date_match else None

    invoice_match = _INVOICE_NO_RE.search(text)
    amounts = [parse_amount(m.group(1)) for m in _TOTAL_RE.finditer(text)]
    amount = max(amounts) if amounts else 0.0

    vendor_match = _VENDOR_RE.search(text)
    vendor = vendor_match.group(1).strip() if vendor_match else _first_line_vendor(text)

    found_all = bool(parsed_date and invoice_match and amount > 0 and vendor)
    if not vendor:
        vendor = vendor_from_filename(filename) or NOT_AVAILABLE

    return Classification(
        invoice_status=UNKNOWN if found_all else IRRELEVANT,
        vendor_name=vendor,
        invoice_number=invoice_match.group(1) if invoice_match else NOT_AVAILABLE,
        amount=f"{amount:.2f}" if amount > 0 else NOT_AVAILABLE,
        date=parsed_date.isoformat() if parsed_date else NOT_AVAILABLE,
        notes="heuristic extraction (classifier unavailable)",
        is_financial_document=bool(invoice_match or amount > 0),
        document_type="invoice" if re.search(r'\binvoice\b', text, re.IGNORECASE) else "",
        source="heuristic",
    )


# =============================================================================
# Adapter
# =============================================================================

def _is_retryable_classifier_error(exc: Exception) -> bool:
    return isinstance(exc, ClassifierError) or is_transient_network_error(exc)


def _log_retry(exc: Exception, attempt: int, delay: float) -> None:
    BillSort.print_right(f"  [Retry] classifier failed on attempt {attempt} ({exc}), "
                         f"retrying in {delay:.1f}s...")


class ClassificationAdapter:
    """Classifies documents, absorbing every classifier failure.

    Args:
        classifier: Provider to call, or None to always use the heuristic
        attempts: Total classifier attempts before falling back
        base_delay: Backoff before the second attempt
        sleep: Sleep function, replaceable in tests
    """

    def __init__(self, classifier: Optional[Classifier],
                 attempts: int = CLASSIFIER_ATTEMPTS, base_delay: float = 1.0,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.classifier = classifier
        self.attempts = attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def classify(self, data: bytes, filename: str,
                 mime_type: Optional[str] = None) -> Classification:
        if self.classifier is None:
            return heuristic_classify(data, filename, mime_type)

        @retry_on_transient_error(
            is_retryable=_is_retryable_classifier_error,
            max_retries=self.attempts - 1,
            base_delay=self.base_delay,
            max_delay=30.0,
            on_retry=_log_retry,
            sleep=self.sleep,
        )
        def call():
            return self.classifier.classify(data, mime_type or "application/pdf", filename)

        try:
            raw = call()
        except Exception as e:
            BillSort.print_right(f"  [yellow]Classifier unavailable for {filename}: {e}; "
                                 f"using heuristic extraction[/yellow]")
            return heuristic_classify(data, filename, mime_type)

        try:
            return apply_validation(classification_from_raw(raw), filename)
        except Exception as e:
            BillSort.print_right(f"  [yellow]Unusable classifier output for {filename}: {e}; "
                                 f"using heuristic extraction[/yellow]")
            return heuristic_classify(data, filename, mime_type)
