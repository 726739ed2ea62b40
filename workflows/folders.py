"""Folder routing for a company's accruals tree.

Layout under each company's root folder::

    FY-24-25/Accruals/Buffer/Active
    FY-24-25/Accruals/Buffer/Deleted
    FY-24-25/Accruals/Buffer2
    FY-24-25/Accruals/Bills and Invoices/May/Inflow
    FY-24-25/Accruals/Bills and Invoices/May/Outflow

The financial year runs April 1 to March 31.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from storage import StorageDriver, StorageError, join_path

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
]

ACCRUALS = "Accruals"
BILLS_AND_INVOICES = "Bills and Invoices"


class FolderKind(Enum):
    BUFFER_ACTIVE = "Buffer/Active"
    BUFFER_DELETED = "Buffer/Deleted"
    BUFFER2 = "Buffer2"
    INFLOW = "Inflow"
    OUTFLOW = "Outflow"

    @property
    def is_flow(self) -> bool:
        return self in (FolderKind.INFLOW, FolderKind.OUTFLOW)


FLOW_KINDS = {"inflow": FolderKind.INFLOW, "outflow": FolderKind.OUTFLOW}


def financial_year_start(d: date) -> int:
    return d.year if d.month >= 4 else d.year - 1


def financial_year(d: date) -> str:
    """financial_year(2024-03-15) == "2023-2024"."""
    start = financial_year_start(d)
    return f"{start}-{start + 1}"


def financial_year_folder(d: date) -> str:
    """financial_year_folder(2024-05-01) == "FY-24-25"."""
    start = financial_year_start(d)
    return f"FY-{start % 100:02d}-{(start + 1) % 100:02d}"


def month_name(d: date) -> str:
    return MONTH_NAMES[d.month - 1]


def shift_financial_year(d: date, years: int) -> date:
    """Same month in a neighbouring financial year (day clamped to 28)."""
    return date(d.year + years, d.month, min(d.day, 28))


@dataclass(frozen=True)
class Locator:
    """A resolved folder in the document store."""
    company: str
    financial_year: str
    kind: FolderKind
    path: str
    month: Optional[str] = None


class FolderRouter:
    """Maps (company, reference date, kind) to folders and creates them.

    locate() is pure; resolve() additionally get-or-creates the folder chain.
    Folders created or confirmed during the run are remembered to save round
    trips; invalidate() drops a remembered folder after a failed write.
    """

    def __init__(self, driver: StorageDriver, companies: Dict[str, str]) -> None:
        self.driver = driver
        self.companies = dict(companies)
        self._known: Set[str] = set()

    def company_root(self, company: str) -> str:
        try:
            return self.companies[company]
        except KeyError:
            raise ValueError(f"Unknown company: {company}")

    def locate(self, company: str, reference_date: date, kind: FolderKind) -> Locator:
        """Compute the folder for a document without touching storage."""
        fy_folder = financial_year_folder(reference_date)
        accruals = join_path(join_path(self.company_root(company), fy_folder), ACCRUALS)
        month = None
        if kind.is_flow:
            month = month_name(reference_date)
            path = "/".join([accruals, BILLS_AND_INVOICES, month, kind.value])
        else:
            path = join_path(accruals, kind.value)
        return Locator(company=company, financial_year=financial_year(reference_date),
                       kind=kind, path=path, month=month)

    def resolve(self, company: str, reference_date: date, kind: FolderKind) -> Locator:
        """Locate the folder and make sure it exists."""
        locator = self.locate(company, reference_date, kind)
        self.ensure(locator.path)
        return locator

    def ensure(self, path: str) -> None:
        """Get-or-create every folder along path."""
        if path in self._known:
            return
        parent = ""
        for name in [p for p in path.split('/') if p]:
            current = join_path(parent, name)
            if current not in self._known:
                self.driver.get_or_create_folder(parent, name)
                self._known.add(current)
            parent = current

    def invalidate(self, path: str) -> None:
        """Forget a remembered folder, its ancestors and everything below it."""
        self._known = {
            p for p in self._known
            if p != path and not p.startswith(path + "/") and not path.startswith(p + "/")
        }

    def classify_path(self, company: str, path: str) -> Optional[Tuple[FolderKind, str]]:
        """Work out which routed folder a file path sits in.

        Returns (kind, financial year as "2024-2025") or None if the path is
        outside the company's accruals tree.
        """
        root = self.company_root(company)
        prefix = root + "/" if root else ""
        if not path.startswith(prefix):
            return None
        parts = path[len(prefix):].split('/')[:-1]
        if len(parts) < 3 or parts[1] != ACCRUALS or not parts[0].startswith("FY-"):
            return None
        fy = _parse_fy_folder(parts[0])
        if fy is None:
            return None
        rest = "/".join(parts[2:])
        for kind in (FolderKind.BUFFER_ACTIVE, FolderKind.BUFFER_DELETED, FolderKind.BUFFER2):
            if rest == kind.value:
                return kind, fy
        if len(parts) == 5 and parts[2] == BILLS_AND_INVOICES and parts[3] in MONTH_NAMES:
            for kind in (FolderKind.INFLOW, FolderKind.OUTFLOW):
                if parts[4] == kind.value:
                    return kind, fy
        return None

    def move_into(self, file, locator: Locator):
        """Move a file into a resolved folder, revalidating once on failure."""
        try:
            return self.driver.move_file(file, locator.path)
        except StorageError:
            self.invalidate(locator.path)
            self.ensure(locator.path)
            return self.driver.move_file(file, locator.path)

    def copy_into(self, file, locator: Locator, new_name: Optional[str] = None):
        """Copy a file into a resolved folder, revalidating once on failure."""
        if new_name:
            new_name = self.driver.sanitize_filename(new_name)
        try:
            return self.driver.copy_file(file, locator.path, new_name)
        except StorageError:
            self.invalidate(locator.path)
            self.ensure(locator.path)
            return self.driver.copy_file(file, locator.path, new_name)

    def create_in(self, locator: Locator, data: bytes, name: str,
                  mime_type: Optional[str] = None):
        """Create a file in a resolved folder, revalidating once on failure."""
        name = self.driver.sanitize_filename(name)
        try:
            return self.driver.create_file(locator.path, data, name, mime_type)
        except StorageError:
            self.invalidate(locator.path)
            self.ensure(locator.path)
            return self.driver.create_file(locator.path, data, name, mime_type)


def _parse_fy_folder(name: str) -> Optional[str]:
    """"FY-24-25" -> "2024-2025"."""
    parts = name.split('-')
    if len(parts) != 3 or not (parts[1].isdigit() and parts[2].isdigit()):
        return None
    start = 2000 + int(parts[1])
    return f"{start}-{start + 1}"
