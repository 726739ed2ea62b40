"""Identifiers and canonical filenames for ingested bills.

Canonical names have the shape ``{date}_{vendor}_{invoice}_{amount}.{ext}``,
e.g. ``2024-05-01_Acme_INV-1_100.00.pdf``. Generation never fails: any input
that would not pass the validator is replaced by a fallback name that does.
"""

import hashlib
import mimetypes
import os
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .classification import Classification
    from .log_store import LogStore

DEFAULT_VENDOR = "UnknownVendor"
DEFAULT_AMOUNT = "0.00"
MAX_FILENAME_LENGTH = 200
MAX_VENDOR_LENGTH = 60
MAX_INVOICE_LENGTH = 40

UNIQUE_ID_PREFIX = "V"
UNIQUE_ID_WIDTH = 6

CANONICAL_RE = re.compile(
    r'^(?P<date>\d{4}-\d{2}-\d{2})'
    r'_(?P<vendor>[A-Za-z0-9 \-.&]+)'
    r'_(?P<invoice>[A-Za-z0-9\-.]+)'
    r'_(?P<amount>[\d.,]+)'
    r'(?P<ext>\.[A-Za-z0-9]+)?$'
)

_MONTHS = {name.lower(): i for i, name in enumerate(
    ["January", "February", "March", "April", "May", "June", "July",
     "August", "September", "October", "November", "December"], 1)}
_MONTHS.update({name[:3]: i for name, i in list(_MONTHS.items())})

_NUMERIC_DATE_FORMATS = [
    "%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%m-%d-%Y", "%d.%m.%Y", "%Y%m%d",
]

_INVOICE_TOKEN_RE = re.compile(
    r'(?:invoice|inv|bill)[\s_\-#:.]*(?:no\.?|number|num)?[\s_\-#:.]*'
    r'([A-Za-z0-9][A-Za-z0-9\-]{2,})',
    re.IGNORECASE,
)

# Attachment filtering
MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024
MAX_ATTACHMENT_NAME_LENGTH = 255
_EXECUTABLE_RE = re.compile(r'\.(exe|bat|cmd|scr|pif|com)$', re.IGNORECASE)
_SYSTEM_FILES = {"thumbs.db", "desktop.ini", ".ds_store"}


# =============================================================================
# Dates
# =============================================================================

def parse_date(value) -> Optional[date]:
    """Parse the date formats seen on bills; returns None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text or text.upper() == "N/A":
        return None

    # ISO timestamps ("2024-05-01T10:00:00Z")
    if re.match(r'^\d{4}-\d{2}-\d{2}T', text):
        text = text[:10]

    for fmt in _NUMERIC_DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt).date()
        except ValueError:
            continue
        return parsed if 1990 <= parsed.year <= 2100 else None

    # "1 May 2024", "May 1, 2024", "01-May-2024"
    words = re.findall(r'[A-Za-z]+|\d+', text)
    month = next((_MONTHS[w.lower()] for w in words if w.lower() in _MONTHS), None)
    # Day and year never need more than four digits
    numbers = [int(w) for w in words if w.isdigit() and len(w) <= 4]
    if month and len(numbers) == 2:
        day, year = (numbers if numbers[1] > 31 else reversed(numbers))
        try:
            parsed = date(year, month, day)
        except (ValueError, OverflowError):
            return None
        return parsed if 1990 <= parsed.year <= 2100 else None
    return None


# =============================================================================
# Field sanitizers
# =============================================================================

def sanitize_vendor(value: Optional[str]) -> str:
    text = (value or "").replace('_', '-')
    text = re.sub(r'[^A-Za-z0-9 \-.&]', '', text)
    text = re.sub(r'\s+', ' ', text).strip(' .-')
    if text.upper() in ("NA", "N-A"):
        return ""
    return text[:MAX_VENDOR_LENGTH].strip()


def sanitize_invoice_number(value: Optional[str]) -> str:
    text = (value or "").replace('_', '-')
    text = re.sub(r'[^A-Za-z0-9\-.]', '', text).strip('.-')
    if text.upper() in ("NA", "N-A"):
        return ""
    return text[:MAX_INVOICE_LENGTH]


def sanitize_amount(value) -> str:
    """Normalize an amount to two decimals; returns "" if there is no number."""
    text = re.sub(r'[^\d.,]', '', str(value if value is not None else ""))
    if not re.search(r'\d', text):
        return ""
    plain = text.replace(',', '')
    try:
        return f"{float(plain):.2f}"
    except ValueError:
        digits = re.sub(r'[^\d.]', '', plain).strip('.')
        return digits.split('.')[0] if digits else ""


def _extension(original_name: str, mime_type: Optional[str] = None) -> str:
    _, ext = os.path.splitext(original_name or "")
    if not ext and mime_type:
        ext = mimetypes.guess_extension(mime_type) or ""
    ext = re.sub(r'[^A-Za-z0-9]', '', ext).lower()[:10]
    return f".{ext}" if ext else ""


def name_token(original_name: str) -> str:
    """Stable 8 hex-digit token derived from an original filename."""
    return hashlib.sha1((original_name or "").encode('utf-8')).hexdigest()[:8].upper()


def extract_invoice_token(original_name: str) -> Optional[str]:
    """Pull an invoice-number-like token out of an original filename."""
    stem, _ = os.path.splitext(original_name or "")
    match = _INVOICE_TOKEN_RE.search(stem)
    if not match:
        return None
    token = sanitize_invoice_number(match.group(1))
    return token or None


# =============================================================================
# Canonical names
# =============================================================================

@dataclass
class FilenameCheck:
    """Outcome of validate_filename()."""
    is_valid: bool
    reason: str = ""


@dataclass
class CanonicalParts:
    """The fields a canonical filename is built from."""
    date: str
    vendor: str
    invoice: str
    amount: str
    ext: str


def parse_canonical(name: str) -> Optional[CanonicalParts]:
    match = CANONICAL_RE.match(name or "")
    if not match:
        return None
    return CanonicalParts(
        date=match.group('date'),
        vendor=match.group('vendor'),
        invoice=match.group('invoice'),
        amount=match.group('amount'),
        ext=(match.group('ext') or "").lower(),
    )


def validate_filename(name: str) -> FilenameCheck:
    """Check a generated or user-authored name against the canonical shape."""
    if not name or not name.strip():
        return FilenameCheck(False, "empty filename")
    if len(name) > MAX_FILENAME_LENGTH:
        return FilenameCheck(False, f"longer than {MAX_FILENAME_LENGTH} characters")
    parts = parse_canonical(name)
    if parts is None:
        return FilenameCheck(False, "does not match DATE_VENDOR_INVOICE_AMOUNT.ext")
    try:
        datetime.strptime(parts.date, "%Y-%m-%d")
    except ValueError:
        return FilenameCheck(False, f"invalid calendar date {parts.date}")
    if not parts.vendor.strip():
        return FilenameCheck(False, "blank vendor")
    if not re.search(r'\d', parts.amount):
        return FilenameCheck(False, "amount has no digits")
    return FilenameCheck(True)


def looks_canonical(name: str) -> bool:
    return validate_filename(name).is_valid


def looks_original(name: str) -> bool:
    return not looks_canonical(name)


def fallback_name(original_name: str, today: Optional[date] = None,
                  mime_type: Optional[str] = None) -> str:
    today = today or date.today()
    return (f"{today.isoformat()}_{DEFAULT_VENDOR}_INV-{name_token(original_name)}"
            f"_{DEFAULT_AMOUNT}{_extension(original_name, mime_type)}")


def canonicalize(classification: "Classification", original_name: str,
                 today: Optional[date] = None,
                 mime_type: Optional[str] = None) -> str:
    """Build the canonical filename for a classified document.

    Every field falls back to a safe default; the result always passes
    validate_filename().
    """
    today = today or date.today()
    doc_date = parse_date(classification.date) or today
    vendor = sanitize_vendor(classification.vendor_name) or DEFAULT_VENDOR
    invoice = (sanitize_invoice_number(classification.invoice_number)
               or f"INV-{name_token(original_name)}")
    amount = sanitize_amount(classification.amount) or DEFAULT_AMOUNT

    name = f"{doc_date.isoformat()}_{vendor}_{invoice}_{amount}{_extension(original_name, mime_type)}"
    if validate_filename(name).is_valid:
        return name
    return fallback_name(original_name, today, mime_type)


# =============================================================================
# Unique ids
# =============================================================================

def format_unique_id(number: int) -> str:
    return f"{UNIQUE_ID_PREFIX}{number:0{UNIQUE_ID_WIDTH}d}"


def parse_unique_id(value: Optional[str]) -> Optional[int]:
    match = re.match(rf'^{UNIQUE_ID_PREFIX}(\d+)$', value or "")
    return int(match.group(1)) if match else None


class IdMinter:
    """Monotonic id counter, memoized by document key.

    Seed it with the ids already persisted in the buffer logs so that a new
    run never hands out an id that is already in use. With ``reserve``
    (e.g. ``LogStore.reserve_unique_number``) numbers come from a shared
    counter instead, and the seeded value only acts as a floor.
    """

    def __init__(self, start: int = 0,
                 reserve: Optional[Callable[[int], int]] = None) -> None:
        self._last = start
        self._reserve = reserve
        self._by_key: Dict[str, str] = {}

    def seed(self, existing_ids: Iterable[Optional[str]]) -> None:
        for value in existing_ids:
            number = parse_unique_id(value)
            if number is not None and number > self._last:
                self._last = number

    def assign(self, document_key: str) -> str:
        if document_key not in self._by_key:
            if self._reserve is not None:
                self._last = self._reserve(self._last)
            else:
                self._last += 1
            self._by_key[document_key] = format_unique_id(self._last)
        return self._by_key[document_key]


def lookup_unique_id(store: "LogStore", company: str,
                     storage_ref: Optional[str] = None,
                     canonical_name: Optional[str] = None) -> Optional[str]:
    """Find the unique id already recorded for a document.

    The buffer log is authoritative; triage rows are consulted afterwards
    because a triage item keeps its id when it is promoted.
    """
    def matches(record) -> bool:
        if not record.unique_id:
            return False
        if storage_ref and record.storage_ref == storage_ref:
            return True
        return bool(canonical_name) and record.canonical_name == canonical_name \
            and not getattr(record, 'repeated_ref', None)

    for kind in ("buffer", "buffer2"):
        rows = store.find_rows(company, kind, matches)
        if rows:
            return rows[0].unique_id
    return None


# =============================================================================
# Attachment filtering
# =============================================================================

def attachment_skip_reason(name: str, mime_type: Optional[str] = None,
                           size: Optional[int] = None) -> Optional[str]:
    """Return why an attachment is not user content, or None to keep it."""
    if not name or not name.strip():
        return "attachment has no name"
    lower = name.lower()
    if mime_type and mime_type.startswith("application/vnd.google-apps"):
        return "Google-native document"
    if name.startswith("ATT"):
        return "placeholder attachment name"
    if lower.startswith('.') or lower in _SYSTEM_FILES:
        return "hidden or system file"
    if lower.startswith('~$'):
        return "Office lock file"
    if _EXECUTABLE_RE.search(lower):
        return "executable attachment"
    if len(name) > MAX_ATTACHMENT_NAME_LENGTH:
        return "filename too long"
    if size is not None and size <= 0:
        return "empty attachment"
    if size is not None and size > MAX_ATTACHMENT_BYTES:
        return "attachment larger than 25MB"
    return None
