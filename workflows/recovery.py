"""Re-locating documents whose recorded storage reference is stale.

Search order:
  1. the last known reference, if it still points at a live file
  2. exact name in Buffer/Active for the anchor year, the year before and after
  3. the same for Buffer/Deleted
  4. the same in the Inflow and Outflow folders of the anchor month
  5. if the recorded name is an original (pre-rename) filename, steps 2-4
     again with a pattern match on canonical names
The first hit wins.
"""

import os
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from storage import FileInfo, StorageDriver
from .folders import FolderKind, FolderRouter, shift_financial_year
from .log_store import REF_DELETED, REF_NOT_FOUND
from .naming import (
    extract_invoice_token,
    looks_original,
    parse_canonical,
    sanitize_amount,
    sanitize_invoice_number,
    sanitize_vendor,
)


@dataclass
class Resolution:
    """Where a document was found.

    ``kind`` and ``financial_year`` are None when the file was found through
    its reference but sits outside the routed folders.
    """
    file: FileInfo
    kind: Optional[FolderKind]
    financial_year: Optional[str]
    name_matches: bool


@dataclass
class SearchHint:
    """Known classification fields used to narrow a pattern search."""
    vendor: str = ""
    invoice_number: str = ""
    amount: str = ""


class RecoveryResolver:
    """Searches the plausible folders of a company for a document."""

    def __init__(self, driver: StorageDriver, router: FolderRouter,
                 today: Callable[[], date] = date.today) -> None:
        self.driver = driver
        self.router = router
        self.today = today

    def resolve(self, company: str, canonical_name: str, last_known_ref: str,
                reference_date: Optional[date] = None,
                hint: Optional[SearchHint] = None) -> Optional[Resolution]:
        """Find a document, or return None if no location holds it."""
        if last_known_ref and last_known_ref not in (REF_DELETED, REF_NOT_FOUND):
            file = self.driver.get_file(last_known_ref)
            if file is not None:
                return self._resolution(company, file, canonical_name)

        anchor = reference_date or self.today()

        if canonical_name:
            found = self._search(company, anchor,
                                 lambda folder: self.driver.find_by_name(folder, canonical_name))
            if found is not None:
                return self._resolution(company, found, canonical_name)

        if canonical_name and looks_original(canonical_name):
            matches = self._pattern(canonical_name, hint)
            if matches is not None:
                found = self._search(company, anchor, lambda folder: [
                    f for f in self._list(folder) if matches(f.name)
                ])
                if found is not None:
                    return self._resolution(company, found, canonical_name)

        return None

    def search_locations(self, company: str, anchor: date) -> List[str]:
        """Folders searched for a document, in search order."""
        paths = []
        for kind in (FolderKind.BUFFER_ACTIVE, FolderKind.BUFFER_DELETED):
            for years in (0, -1, 1):
                paths.append(self.router.locate(company, shift_financial_year(anchor, years), kind).path)
        for kind in (FolderKind.INFLOW, FolderKind.OUTFLOW):
            paths.append(self.router.locate(company, anchor, kind).path)
        return paths

    def _search(self, company: str, anchor: date,
                finder: Callable[[str], List[FileInfo]]) -> Optional[FileInfo]:
        for path in self.search_locations(company, anchor):
            matches = finder(path)
            if matches:
                return matches[0]
        return None

    def _list(self, folder: str) -> List[FileInfo]:
        if not self.driver.folder_exists(folder):
            return []
        return self.driver.list_files(folder)

    def _pattern(self, original_name: str,
                 hint: Optional[SearchHint]) -> Optional[Callable[[str], bool]]:
        """Predicate matching canonical names that agree with every known field.

        Returns None if nothing is known, so that an unrelated file can never
        be picked up.
        """
        hint = hint or SearchHint()
        ext = os.path.splitext(original_name)[1].lower()
        invoice = sanitize_invoice_number(hint.invoice_number) or extract_invoice_token(original_name) or ""
        vendor = sanitize_vendor(hint.vendor)
        amount = sanitize_amount(hint.amount) if hint.amount else ""
        if not (invoice or vendor or amount):
            return None

        def matches(name: str) -> bool:
            parts = parse_canonical(name)
            if parts is None:
                return False
            if ext and parts.ext != ext:
                return False
            if invoice and parts.invoice.lower() != invoice.lower():
                return False
            if vendor and parts.vendor.lower() != vendor.lower():
                return False
            if amount and parts.amount != amount:
                return False
            return True

        return matches

    def _resolution(self, company: str, file: FileInfo, canonical_name: str) -> Resolution:
        located = self.router.classify_path(company, file.path)
        kind, fy = located if located else (None, None)
        return Resolution(file=file, kind=kind, financial_year=fy,
                          name_matches=file.name == canonical_name)
