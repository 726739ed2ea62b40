"""Activity log: a monthly text audit trail kept in the document store."""

import os
import tempfile
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from billsort import BillSort
from storage import StorageError, join_path

if TYPE_CHECKING:
    from .context import RunContext

ACTIVITY_FOLDER = "--ActivityLog"


def log_path(company_root: str, now: Optional[datetime] = None) -> str:
    """Return monthly log path: <company root>/--ActivityLog/YYYY-MM-activity.log"""
    month = (now or datetime.now()).strftime("%Y-%m")
    return join_path(join_path(company_root, ACTIVITY_FOLDER), f"{month}-activity.log")


def _append(ctx: "RunContext", path: str, entry: str) -> None:
    """Append entry using the read-append-upload pattern."""
    try:
        existing = ctx.driver.read_text(path)
    except StorageError:
        existing = ""

    fd, temp_path = tempfile.mkstemp(suffix='.log', text=True)
    try:
        with os.fdopen(fd, 'w') as f:
            f.write(existing + entry + "\n")
        ctx.driver.upload(temp_path, path)
    finally:
        os.unlink(temp_path)


def _format(action: str, name: str, detail: str, error: Optional[str] = None) -> str:
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines = [f"[{ts}] {action}", f"  Document: {name or '(unnamed)'}", f"  Detail: {detail}"]
    if error:
        lines.append(f"  Error: {error}")
    return "\n".join(lines) + "\n"


def log(ctx: "RunContext", company: str, action: str, name: str, detail: str,
        error: Optional[str] = None) -> None:
    """Record an intake decision or transition. Warns instead of failing."""
    if not ctx.activity_log:
        return
    try:
        path = log_path(ctx.router.company_root(company))
        _append(ctx, path, _format(action, name, detail, error))
    except Exception as e:
        BillSort.print_right(f"⚠ Failed to write activity log: {e}")
