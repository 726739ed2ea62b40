"""Workflow layer for billsort.

Contains the processing logic for mailed bills:
- Intake: deduplicate, classify, rename and store attachments
- Lifecycle: Active/Delete and triage transitions with log reconciliation
- Recovery: re-locate documents whose storage reference went stale
"""

from .classification import Classification, ClassificationAdapter
from .context import RunContext
from .errors import (
    BillSortError,
    ConsistencyError,
    ErrorKind,
    LockTimeoutError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from .folders import FolderKind, FolderRouter, Locator, financial_year
from .intake import (
    CancellationToken,
    IntakeDecision,
    IntakeEngine,
    IntakeResult,
    logged_attachments,
)
from .lifecycle import FieldChange, LifecycleMachine, TransitionResult
from .locks import CompanyLocks
from .log_store import BufferRecord, FlowLogRow, LogStore, TriageRecord
from .naming import IdMinter, canonicalize, validate_filename
from .recovery import RecoveryResolver, Resolution, SearchHint
from .repair import RepairSummary, repair_buffer


__all__ = [
    # Run context
    'RunContext',
    'CompanyLocks',

    # Intake
    'CancellationToken',
    'IntakeDecision',
    'IntakeEngine',
    'IntakeResult',
    'logged_attachments',

    # Lifecycle
    'FieldChange',
    'LifecycleMachine',
    'TransitionResult',

    # Recovery and repair
    'RecoveryResolver',
    'Resolution',
    'SearchHint',
    'RepairSummary',
    'repair_buffer',

    # Naming, classification, folders
    'IdMinter',
    'canonicalize',
    'validate_filename',
    'Classification',
    'ClassificationAdapter',
    'FolderKind',
    'FolderRouter',
    'Locator',
    'financial_year',

    # Logs
    'BufferRecord',
    'FlowLogRow',
    'LogStore',
    'TriageRecord',

    # Errors
    'BillSortError',
    'ConsistencyError',
    'ErrorKind',
    'LockTimeoutError',
    'NotFoundError',
    'TransientIOError',
    'ValidationError',
]
