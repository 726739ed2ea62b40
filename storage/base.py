"""Base classes for storage drivers.

This module defines the abstract interface that all document store backends
must implement. Folder and file locations are relative paths within the
storage root; files are passed around as FileInfo so that backends with
native identifiers (Google Drive) can act on the exact file.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


@dataclass
class FileInfo:
    """Information about a file in storage.

    Attributes:
        path: Relative path within the storage root
        name: Filename only (no directory)
        size: File size in bytes (optional)
        id: Backend-specific identifier (e.g., Google Drive file ID)
        mime_type: MIME type if the backend knows it
    """
    path: str
    name: str
    size: Optional[int] = None
    id: Optional[str] = None
    mime_type: Optional[str] = None

    @property
    def folder(self) -> str:
        """Relative path of the containing folder."""
        return self.path.rsplit('/', 1)[0] if '/' in self.path else ""


@dataclass
class FolderInfo:
    """Information about a folder in storage.

    Attributes:
        path: Relative path within the storage root
        name: Folder name only (no parent path)
        id: Backend-specific identifier (e.g., Google Drive folder ID)
    """
    path: str
    name: str
    id: Optional[str] = None


def join_path(parent: str, name: str) -> str:
    """Join a relative folder path and a child name."""
    return f"{parent}/{name}" if parent else name


class StorageDriver(ABC):
    """Abstract base class for document store backends.

    Implemented by LocalDriver and GDriveDriver. A storage reference
    (``ref``) is the stable handle a log row keeps for a file: the Drive
    file ID where the backend has one, otherwise the relative path.
    """

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for this storage (e.g., 'Accounts (Google Drive)')."""
        pass

    # =========================================================================
    # Read Operations
    # =========================================================================

    @abstractmethod
    def list_files(self, path: str = "", recursive: bool = False,
                   extension: Optional[str] = None) -> List[FileInfo]:
        """List files at the given path.

        Args:
            path: Relative path within storage (empty string for root)
            recursive: If True, include files in subdirectories
            extension: Filter by file extension (e.g., ".pdf"), case-insensitive

        Returns:
            List of FileInfo objects

        Raises:
            StorageError: If path doesn't exist or can't be accessed
        """
        pass

    @abstractmethod
    def folder_exists(self, path: str) -> bool:
        """Check if a folder exists at the given path."""
        pass

    @abstractmethod
    def find_by_name(self, folder: str, name: str) -> List[FileInfo]:
        """Find files with an exact name directly inside a folder.

        Returns an empty list when the folder does not exist.
        """
        pass

    @abstractmethod
    def get_file(self, ref: str) -> Optional[FileInfo]:
        """Resolve a storage reference to a live (non-trashed) file.

        Returns None if the reference no longer points at a live file.
        """
        pass

    @abstractmethod
    def read_text(self, path: str) -> str:
        """Read a text file and return its contents.

        Raises:
            StorageError: If file doesn't exist or can't be read
        """
        pass

    @abstractmethod
    def read_bytes(self, file: FileInfo) -> bytes:
        """Read the raw contents of a file.

        Raises:
            StorageError: If file doesn't exist or can't be read
        """
        pass

    def ref_for(self, file: FileInfo) -> str:
        """Return the storage reference a log row should keep for a file."""
        return file.id or file.path

    # =========================================================================
    # Write Operations
    # =========================================================================

    @abstractmethod
    def get_or_create_folder(self, parent: str, name: str) -> FolderInfo:
        """Return the folder ``name`` under ``parent``, creating it if missing.

        Raises:
            StorageError: If the parent is inaccessible or creation fails
        """
        pass

    @abstractmethod
    def create_file(self, folder: str, data: bytes, name: str,
                    mime_type: Optional[str] = None) -> FileInfo:
        """Create a new file in an existing folder.

        Raises:
            StorageError: If the folder is missing or the write fails
        """
        pass

    @abstractmethod
    def upload(self, local_path: str, dest_path: str) -> None:
        """Upload a local file to storage, replacing any file at dest_path.

        Creates parent directories as needed.

        Raises:
            StorageError: If upload fails
        """
        pass

    @abstractmethod
    def move_file(self, file: FileInfo, dest_folder: str) -> FileInfo:
        """Move a file into another folder, keeping its name.

        Returns:
            FileInfo describing the file at its new location

        Raises:
            StorageError: If move fails
        """
        pass

    @abstractmethod
    def copy_file(self, file: FileInfo, dest_folder: str,
                  new_name: Optional[str] = None) -> FileInfo:
        """Copy a file into another folder, optionally under a new name.

        Raises:
            StorageError: If copy fails
        """
        pass

    @abstractmethod
    def trash(self, file: FileInfo) -> None:
        """Move a file to the backend's trash (recoverable delete).

        Raises:
            StorageError: If the file can't be trashed
        """
        pass

    # =========================================================================
    # Filename Handling
    # =========================================================================

    @abstractmethod
    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for this storage backend.

        Args:
            name: Proposed filename (without path)

        Returns:
            Sanitized filename safe for this storage backend
        """
        pass
