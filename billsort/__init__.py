"""BillSort - Application state and configuration."""

import os
import re
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    import argparse
    from storage import StorageDriver

__version__ = "0.1.0"

# Linux/macOS user data directory for the log database
DATA_DIR = os.path.expanduser(
    os.environ.get("XDG_DATA_HOME", "~/.local/share")
)
DEFAULT_LEDGER_DB = os.path.join(DATA_DIR, "billsort", "ledger.db")


def _strip_rich_markup(text: str) -> str:
    """Remove Rich markup tags like [red], [/red], [bold], etc."""
    return re.sub(r'\[/?[a-zA-Z_]+\]', '', text)


def parse_company_entries(value: str) -> List[Tuple[str, str, str]]:
    """Parse a COMPANIES setting into (company, root folder, mail label) tuples.

    Format is ``Name=root/path@Label;Other=other/root``. A bare ``Name`` uses
    the company name itself as its root folder; the label is "" when the
    entry names none.
    """
    entries = []
    for entry in value.split(';'):
        entry = entry.strip()
        if not entry:
            continue
        entry, _, label = entry.partition('@')
        if '=' in entry:
            name, root = entry.split('=', 1)
            name, root = name.strip(), root.strip().strip('/')
        else:
            name, root = entry.strip(), entry.strip()
        if name:
            entries.append((name, root or name, label.strip()))
    return entries


def parse_companies(value: str) -> Dict[str, str]:
    """{company: root folder} from a COMPANIES setting."""
    return {name: root for name, root, _ in parse_company_entries(value)}


def parse_company_labels(value: str) -> Dict[str, str]:
    """{company: mail label} for the COMPANIES entries that name a label."""
    return {name: label for name, _, label in parse_company_entries(value) if label}


class BillSort:
    """Central configuration and UI output for BillSort."""

    # CLI config options
    log: bool = False

    # Global resources
    docstore_driver: Optional["StorageDriver"] = None
    classifier_provider_name: str = "mistral"
    ledger_path: str = DEFAULT_LEDGER_DB
    companies: Dict[str, str] = {}
    company_labels: Dict[str, str] = {}
    mail_label: str = "Invoices"
    label_override: Optional[str] = None
    lock_timeout: float = 30.0

    # UI app reference (None = CLI mode)
    _app: Optional[Any] = None

    # Decision counts for the current intake run
    _tallies: Dict[str, int] = {}

    @classmethod
    def configure(cls, args: "argparse.Namespace",
                  docstore_driver: Optional["StorageDriver"] = None) -> None:
        """Initialize configuration from parsed CLI args and environment."""
        cls.log = getattr(args, 'log', False)
        cls.classifier_provider_name = os.environ.get('CLASSIFIER_PROVIDER', 'mistral')
        cls.ledger_path = os.environ.get('LEDGER_DB', DEFAULT_LEDGER_DB)
        companies = os.environ.get('COMPANIES', '')
        cls.companies = parse_companies(companies)
        cls.company_labels = parse_company_labels(companies)
        cls.mail_label = os.environ.get('MAIL_LABEL', 'Invoices')
        cls.label_override = getattr(args, 'label', None)
        cls.lock_timeout = float(os.environ.get('LOCK_TIMEOUT', '30'))
        cls.docstore_driver = docstore_driver

    @classmethod
    def label_for(cls, company: str) -> str:
        """Mail label holding a company's bills: --label, then its COMPANIES entry, then MAIL_LABEL."""
        return cls.label_override or cls.company_labels.get(company) or cls.mail_label

    @classmethod
    def set_app(cls, app: Any) -> None:
        """Set the Textual app reference for UI updates."""
        cls._app = app

    @classmethod
    def print_left(cls, line1: str, line2: str) -> None:
        """Add entry to decision log (left panel in TUI, stdout in CLI)."""
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.add_decision, line1, line2)
        else:
            print(_strip_rich_markup(line1))
            print(_strip_rich_markup(line2))

    @classmethod
    def print_right(cls, message: str) -> None:
        """Add line to debug log (right panel in TUI, stdout in CLI)."""
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.add_debug, message)
        else:
            print(_strip_rich_markup(message))

    @classmethod
    def set_progress(cls, current: int, total: int) -> None:
        """Update progress bar and label."""
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.set_progress, current, total)

    @classmethod
    def tally(cls, action: str) -> None:
        """Count one intake decision by action (stored, duplicate, ...)."""
        cls._tallies[action] = cls._tallies.get(action, 0) + 1
        if cls._app is not None:
            cls._app.call_from_thread(cls._app.set_tallies, dict(cls._tallies))

    @classmethod
    def reset_tallies(cls) -> None:
        cls._tallies = {}

    @classmethod
    def tallies(cls) -> Dict[str, int]:
        return dict(cls._tallies)
