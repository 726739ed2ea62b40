"""Per-run context shared by the intake engine and the lifecycle machine."""

import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Optional

from billsort import BillSort
from models import Classifier, create_classifier
from storage import StorageDriver
from .classification import ClassificationAdapter
from .folders import FolderRouter
from .locks import CompanyLocks, DEFAULT_LOCK_TIMEOUT, default_lock_dir
from .log_store import LogStore
from .naming import IdMinter
from .recovery import RecoveryResolver


@dataclass
class RunContext:
    """Everything a workflow needs for one run, passed explicitly.

    The minter draws numbers from the ledger's shared counter, floored at the
    highest id already recorded, so separate processes never mint the same
    id. Company locks are files in ``lock_dir`` (by default beside the
    ledger), so they exclude other processes as well as other threads.
    """
    driver: StorageDriver
    store: LogStore
    classifier: ClassificationAdapter
    router: FolderRouter
    resolver: RecoveryResolver
    minter: IdMinter
    locks: CompanyLocks
    activity_log: bool = False
    today: Callable[[], date] = field(default=date.today)

    @classmethod
    def create(cls, driver: StorageDriver, store: LogStore, companies: Dict[str, str],
               classifier: Optional[Classifier] = None,
               lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
               lock_dir: Optional[str] = None,
               activity_log: bool = False,
               today: Callable[[], date] = date.today,
               classifier_sleep: Callable[[float], None] = time.sleep) -> "RunContext":
        router = FolderRouter(driver, companies)
        minter = IdMinter(reserve=store.reserve_unique_number)
        minter.seed(store.column_values("buffer", "unique_id"))
        minter.seed(store.column_values("buffer2", "unique_id"))
        return cls(
            driver=driver,
            store=store,
            classifier=ClassificationAdapter(classifier, sleep=classifier_sleep),
            router=router,
            resolver=RecoveryResolver(driver, router, today=today),
            minter=minter,
            locks=CompanyLocks(lock_dir or default_lock_dir(store.db_path), lock_timeout),
            activity_log=activity_log,
            today=today,
        )

    @classmethod
    def from_config(cls) -> "RunContext":
        """Build a context from BillSort's configuration."""
        if BillSort.docstore_driver is None:
            raise ValueError("No document store configured (set DOCSTORE)")
        if not BillSort.companies:
            raise ValueError("No companies configured (set COMPANIES)")

        try:
            classifier = create_classifier(BillSort.classifier_provider_name)
        except KeyError as e:
            BillSort.print_right(f"[yellow]Classifier credentials missing ({e}); "
                                 f"using heuristic extraction only[/yellow]")
            classifier = None

        return cls.create(
            driver=BillSort.docstore_driver,
            store=LogStore(BillSort.ledger_path),
            companies=BillSort.companies,
            classifier=classifier,
            lock_timeout=BillSort.lock_timeout,
            activity_log=BillSort.log,
        )

    def close(self) -> None:
        self.store.close()
