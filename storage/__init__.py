"""Document store drivers for billsort.

The store holds each company's folder tree (financial years, buffers,
flow folders) and is addressed by URI:

    local:/path/to/folder   LocalDriver, for tests and offline runs
    gdrive:folder_id        GDriveDriver, the shared Drive the team works in
"""

from .base import StorageDriver, StorageError, FileInfo, FolderInfo, join_path
from .local import LocalDriver
from .gdrive import GDriveDriver

BACKENDS = {
    "local": LocalDriver,
    "gdrive": GDriveDriver,
}


def parse_storage_uri(uri: str) -> tuple:
    """Split a storage URI into (backend, location).

    Raises:
        ValueError: If the scheme is missing or unknown
    """
    scheme, sep, location = uri.partition(":")
    if not sep or scheme not in BACKENDS:
        known = ", ".join(f"'{name}:'" for name in BACKENDS)
        raise ValueError(f"Invalid storage URI: {uri}. Must start with one of {known}")
    return scheme, location


def create_storage(uri: str) -> StorageDriver:
    """Create the driver for a DOCSTORE URI.

    Raises:
        ValueError: If the URI is invalid
    """
    backend, location = parse_storage_uri(uri)
    return BACKENDS[backend](location)


__all__ = [
    'StorageDriver',
    'StorageError',
    'FileInfo',
    'FolderInfo',
    'LocalDriver',
    'GDriveDriver',
    'create_storage',
    'join_path',
    'parse_storage_uri',
]
