"""Local filesystem storage driver."""

import mimetypes
import os
import re
import shutil
from datetime import datetime
from typing import List, Optional

from .base import StorageDriver, StorageError, FileInfo, FolderInfo, join_path

# Trashed files are kept here (relative to the root) instead of being removed
TRASH_FOLDER = ".trash"


class LocalDriver(StorageDriver):
    """Storage driver for local filesystem.

    All paths are relative to the root_path provided at construction.
    Names inside a folder are unique, so writes that would collide get a
    " (n)" suffix before the extension.
    """

    def __init__(self, root_path: str) -> None:
        """Initialize local storage driver.

        Args:
            root_path: Absolute path to the root directory

        Raises:
            StorageError: If root_path doesn't exist
        """
        self.root_path = os.path.abspath(root_path)
        if not os.path.exists(self.root_path):
            raise StorageError(f"Directory does not exist: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise StorageError(f"Not a directory: {self.root_path}")

    @property
    def display_name(self) -> str:
        return f"{self.root_path} (local)"

    def _full_path(self, path: str) -> str:
        """Convert relative path to absolute path."""
        if not path:
            return self.root_path
        return os.path.join(self.root_path, path)

    def _file_info(self, rel_path: str) -> FileInfo:
        abs_path = self._full_path(rel_path)
        try:
            size = os.path.getsize(abs_path)
        except OSError:
            size = None
        mime_type, _ = mimetypes.guess_type(abs_path)
        return FileInfo(
            path=rel_path.replace(os.sep, '/'),
            name=os.path.basename(rel_path),
            size=size,
            mime_type=mime_type,
        )

    def _free_name(self, folder: str, name: str) -> str:
        """Return name, or name with a " (n)" suffix if it is taken in folder."""
        if not os.path.exists(self._full_path(join_path(folder, name))):
            return name
        stem, ext = os.path.splitext(name)
        n = 2
        while os.path.exists(self._full_path(join_path(folder, f"{stem} ({n}){ext}"))):
            n += 1
        return f"{stem} ({n}){ext}"

    def _require_folder(self, folder: str) -> str:
        full_path = self._full_path(folder)
        if not os.path.isdir(full_path):
            raise StorageError(f"Folder does not exist: {folder}")
        return full_path

    def _require_file(self, file: FileInfo) -> str:
        full_path = self._full_path(file.path)
        if not os.path.isfile(full_path):
            raise StorageError(f"File does not exist: {file.path}")
        return full_path

    def list_files(self, path: str = "", recursive: bool = False,
                   extension: Optional[str] = None) -> List[FileInfo]:
        """List files at the given path."""
        full_path = self._full_path(path)

        if not os.path.exists(full_path):
            raise StorageError(f"Path does not exist: {path}")
        if not os.path.isdir(full_path):
            raise StorageError(f"Not a directory: {path}")

        extension_lower = extension.lower() if extension else None
        results = []

        if recursive:
            for root, dirs, files in os.walk(full_path):
                # Never descend into the trash
                dirs[:] = [d for d in dirs if d != TRASH_FOLDER]
                for filename in files:
                    if extension_lower and not filename.lower().endswith(extension_lower):
                        continue
                    rel_path = os.path.relpath(os.path.join(root, filename), self.root_path)
                    results.append(self._file_info(rel_path))
        else:
            for filename in os.listdir(full_path):
                abs_path = os.path.join(full_path, filename)
                if not os.path.isfile(abs_path):
                    continue
                if extension_lower and not filename.lower().endswith(extension_lower):
                    continue
                results.append(self._file_info(os.path.relpath(abs_path, self.root_path)))

        return results

    def folder_exists(self, path: str) -> bool:
        return os.path.isdir(self._full_path(path))

    def find_by_name(self, folder: str, name: str) -> List[FileInfo]:
        rel_path = join_path(folder, name)
        if os.path.isfile(self._full_path(rel_path)):
            return [self._file_info(rel_path)]
        return []

    def get_file(self, ref: str) -> Optional[FileInfo]:
        """Resolve a relative path reference; trashed files are not live."""
        if not ref or ref.split('/', 1)[0] == TRASH_FOLDER:
            return None
        if not os.path.isfile(self._full_path(ref)):
            return None
        return self._file_info(ref)

    def read_text(self, path: str) -> str:
        """Read a text file and return its contents."""
        full_path = self._full_path(path)

        if not os.path.exists(full_path):
            raise StorageError(f"File does not exist: {path}")
        if not os.path.isfile(full_path):
            raise StorageError(f"Not a file: {path}")

        try:
            with open(full_path, 'r', encoding='utf-8') as f:
                return f.read()
        except Exception as e:
            raise StorageError(f"Failed to read file {path}: {e}")

    def read_bytes(self, file: FileInfo) -> bytes:
        full_path = self._require_file(file)
        try:
            with open(full_path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read file {file.path}: {e}")

    def get_or_create_folder(self, parent: str, name: str) -> FolderInfo:
        self._require_folder(parent)
        rel_path = join_path(parent, name)
        try:
            os.makedirs(self._full_path(rel_path), exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create folder {rel_path}: {e}")
        return FolderInfo(path=rel_path, name=name)

    def create_file(self, folder: str, data: bytes, name: str,
                    mime_type: Optional[str] = None) -> FileInfo:
        self._require_folder(folder)
        rel_path = join_path(folder, self._free_name(folder, name))
        try:
            with open(self._full_path(rel_path), 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write file {rel_path}: {e}")
        return self._file_info(rel_path)

    def upload(self, local_path: str, dest_path: str) -> None:
        """Copy a local file to the storage location."""
        full_dest = self._full_path(dest_path)

        dest_dir = os.path.dirname(full_dest)
        if dest_dir:
            os.makedirs(dest_dir, exist_ok=True)

        try:
            shutil.copy2(local_path, full_dest)
        except Exception as e:
            raise StorageError(f"Failed to copy file to {dest_path}: {e}")

    def move_file(self, file: FileInfo, dest_folder: str) -> FileInfo:
        full_src = self._require_file(file)
        self._require_folder(dest_folder)
        if file.folder == dest_folder:
            return self._file_info(file.path)

        dest_path = join_path(dest_folder, self._free_name(dest_folder, file.name))
        try:
            shutil.move(full_src, self._full_path(dest_path))
        except Exception as e:
            raise StorageError(f"Failed to move file from {file.path} to {dest_path}: {e}")
        return self._file_info(dest_path)

    def copy_file(self, file: FileInfo, dest_folder: str,
                  new_name: Optional[str] = None) -> FileInfo:
        full_src = self._require_file(file)
        self._require_folder(dest_folder)

        dest_path = join_path(dest_folder, self._free_name(dest_folder, new_name or file.name))
        try:
            shutil.copy2(full_src, self._full_path(dest_path))
        except Exception as e:
            raise StorageError(f"Failed to copy file from {file.path} to {dest_path}: {e}")
        return self._file_info(dest_path)

    def trash(self, file: FileInfo) -> None:
        """Move a file into the root's .trash folder with a timestamp prefix."""
        full_src = self._require_file(file)
        os.makedirs(self._full_path(TRASH_FOLDER), exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        dest_name = self._free_name(TRASH_FOLDER, f"{stamp}-{file.name}")
        try:
            shutil.move(full_src, self._full_path(join_path(TRASH_FOLDER, dest_name)))
        except Exception as e:
            raise StorageError(f"Failed to trash {file.path}: {e}")

    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for local filesystem.

        Removes characters that are invalid on most filesystems:
        / \\ : * ? \" < > |
        """
        name = name.replace('/', '-')
        name = name.replace('\\', '-')
        name = name.replace(':', '-')
        name = name.replace('*', '')
        name = name.replace('?', '')
        name = name.replace('"', "'")
        name = name.replace('<', '')
        name = name.replace('>', '')
        name = name.replace('|', '-')

        # Remove leading/trailing whitespace and dots
        name = name.strip().strip('.')

        # Collapse multiple spaces
        name = re.sub(r'\s+', ' ', name)

        if len(name) > 200:
            stem, ext = os.path.splitext(name)
            name = stem[:200 - len(ext)].strip() + ext

        return name
