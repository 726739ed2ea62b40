"""Google Drive storage driver."""

from typing import Dict, List, Optional
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseDownload, MediaIoBaseUpload
import io

from .base import StorageDriver, StorageError, FileInfo, FolderInfo, join_path
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    TRANSIENT_HTTP_STATUS_CODES,
)


SCOPES = ['https://www.googleapis.com/auth/drive']

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'

FILE_FIELDS = "id, name, mimeType, size, parents, trashed"


# ---------------------------------------------------------------------------
# Google Drive Retry Configuration
# ---------------------------------------------------------------------------

def _is_retryable_gdrive_error(exc: Exception) -> bool:
    """Determine if a Google Drive API error should be retried."""
    if isinstance(exc, HttpError):
        return exc.resp.status in TRANSIENT_HTTP_STATUS_CODES
    return is_transient_network_error(exc)


def _log_retry(exc: Exception, attempt: int, delay: float) -> None:
    """Log when a retry is about to happen."""
    from billsort import BillSort
    if isinstance(exc, HttpError):
        error_desc = f"HTTP {exc.resp.status}"
    else:
        error_desc = type(exc).__name__
    BillSort.print_right(f"  [Retry] {error_desc} on attempt {attempt}, retrying in {delay:.1f}s...")


def _execute_with_retry(request):
    """Execute a Google Drive API request with automatic retry."""
    @retry_on_transient_error(
        is_retryable=_is_retryable_gdrive_error,
        max_retries=5,
        base_delay=1.0,
        max_delay=60.0,
        on_retry=_log_retry,
    )
    def execute():
        return request.execute()
    return execute()


def _download_with_retry(request, destination) -> None:
    """Download a file from Google Drive with automatic retry per chunk."""
    downloader = MediaIoBaseDownload(destination, request)

    @retry_on_transient_error(
        is_retryable=_is_retryable_gdrive_error,
        max_retries=5,
        base_delay=1.0,
        max_delay=60.0,
        on_retry=_log_retry,
    )
    def download_next_chunk():
        return downloader.next_chunk()

    done = False
    while not done:
        _, done = download_next_chunk()


def _escape_query_value(value: str) -> str:
    """Escape a value for use in Google Drive API query strings."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GDriveDriver(StorageDriver):
    """Storage driver for Google Drive.

    Uses service account authentication. All paths are relative to
    the root_folder_id provided at construction; storage references are
    Drive file IDs.
    """

    def __init__(self, root_folder_id: str,
                 service_account_file: str = "service_account_key.json") -> None:
        """Initialize Google Drive storage driver.

        Args:
            root_folder_id: Google Drive folder ID to use as root
            service_account_file: Path to service account credentials JSON

        Raises:
            StorageError: If authentication fails or folder can't be accessed
        """
        self.root_folder_id = root_folder_id
        self._root_folder_name: Optional[str] = None

        try:
            self.creds = service_account.Credentials.from_service_account_file(
                service_account_file, scopes=SCOPES
            )
            self.service = build('drive', 'v3', credentials=self.creds)

            result = _execute_with_retry(self.service.files().get(
                fileId=root_folder_id,
                fields="id, name",
                supportsAllDrives=True,
            ))
            self._root_folder_name = result['name']

        except Exception as e:
            raise StorageError(f"Failed to initialize Google Drive: {e}")

    @property
    def display_name(self) -> str:
        name = self._root_folder_name or self.root_folder_id
        return f"{name} (Google Drive)"

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _query(self, q: str, fields: str = "files(id, name, mimeType, size)") -> List[Dict]:
        """Run a files().list query and return all pages."""
        items: List[Dict] = []
        page_token = None
        while True:
            response = _execute_with_retry(self.service.files().list(
                q=q,
                pageSize=100,
                fields=f"nextPageToken, {fields}",
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ))
            items.extend(response.get('files', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                return items

    def _find_child_folder(self, parent_id: str, name: str) -> Optional[str]:
        escaped = _escape_query_value(name)
        items = self._query(
            f"name='{escaped}' and mimeType='{FOLDER_MIME_TYPE}' "
            f"and '{parent_id}' in parents and trashed=false",
            fields="files(id, name)",
        )
        return items[0]['id'] if items else None

    def _get_folder_id(self, path: str) -> str:
        """Get folder ID for a path relative to root folder."""
        current_parent = self.root_folder_id
        for part in [p for p in path.split('/') if p]:
            folder_id = self._find_child_folder(current_parent, part)
            if folder_id is None:
                raise StorageError(f"Folder not found: {path}")
            current_parent = folder_id
        return current_parent

    def _to_file_info(self, item: Dict, folder: str) -> FileInfo:
        return FileInfo(
            path=join_path(folder, item['name']),
            name=item['name'],
            size=int(item['size']) if item.get('size') else None,
            id=item['id'],
            mime_type=item.get('mimeType'),
        )

    def _path_of(self, item: Dict) -> Optional[str]:
        """Build the root-relative folder path of an item, or None if outside root."""
        parts: List[str] = []
        parents = item.get('parents') or []
        while parents:
            parent_id = parents[0]
            if parent_id == self.root_folder_id:
                return '/'.join(reversed(parts))
            parent = _execute_with_retry(self.service.files().get(
                fileId=parent_id,
                fields="id, name, parents",
                supportsAllDrives=True,
            ))
            parts.append(parent['name'])
            parents = parent.get('parents') or []
        return None

    # =========================================================================
    # Read Operations
    # =========================================================================

    def list_files(self, path: str = "", recursive: bool = False,
                   extension: Optional[str] = None) -> List[FileInfo]:
        """List files at the given path."""
        folder_id = self._get_folder_id(path)
        extension_lower = extension.lower() if extension else None
        results: List[FileInfo] = []
        self._list_files(folder_id, path, recursive, extension_lower, results)
        return results

    def _list_files(self, folder_id: str, base_path: str, recursive: bool,
                    extension: Optional[str], results: List[FileInfo]) -> None:
        for item in self._query(f"'{folder_id}' in parents and trashed=false"):
            if item['mimeType'] == FOLDER_MIME_TYPE:
                if recursive:
                    self._list_files(item['id'], join_path(base_path, item['name']),
                                     recursive, extension, results)
                continue
            if extension and not item['name'].lower().endswith(extension):
                continue
            results.append(self._to_file_info(item, base_path))

    def folder_exists(self, path: str) -> bool:
        try:
            self._get_folder_id(path)
            return True
        except StorageError:
            return False

    def find_by_name(self, folder: str, name: str) -> List[FileInfo]:
        try:
            folder_id = self._get_folder_id(folder)
        except StorageError:
            return []
        escaped = _escape_query_value(name)
        items = self._query(
            f"name='{escaped}' and '{folder_id}' in parents and trashed=false "
            f"and mimeType!='{FOLDER_MIME_TYPE}'"
        )
        return [self._to_file_info(item, folder) for item in items]

    def get_file(self, ref: str) -> Optional[FileInfo]:
        """Look up a Drive file ID; trashed or out-of-root files are not live."""
        if not ref:
            return None
        try:
            item = _execute_with_retry(self.service.files().get(
                fileId=ref,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ))
        except HttpError as e:
            if e.resp.status == 404:
                return None
            raise StorageError(f"Failed to look up file {ref}: {e}")
        if item.get('trashed') or item.get('mimeType') == FOLDER_MIME_TYPE:
            return None
        folder = self._path_of(item)
        if folder is None:
            return None
        return self._to_file_info(item, folder)

    def read_text(self, path: str) -> str:
        """Read a text file and return its contents."""
        folder, _, name = path.rpartition('/')
        matches = self.find_by_name(folder, name)
        if not matches:
            raise StorageError(f"File not found: {path}")
        return self.read_bytes(matches[0]).decode('utf-8')

    def read_bytes(self, file: FileInfo) -> bytes:
        file_id = file.id or self._require_id(file)
        try:
            request = self.service.files().get_media(fileId=file_id)
            buffer = io.BytesIO()
            _download_with_retry(request, buffer)
            return buffer.getvalue()
        except Exception as e:
            raise StorageError(f"Failed to read file {file.path}: {e}")

    def _require_id(self, file: FileInfo) -> str:
        matches = self.find_by_name(file.folder, file.name)
        if not matches:
            raise StorageError(f"File not found: {file.path}")
        return matches[0].id

    # =========================================================================
    # Write Operations
    # =========================================================================

    def get_or_create_folder(self, parent: str, name: str) -> FolderInfo:
        parent_id = self._get_folder_id(parent)
        folder_id = self._find_child_folder(parent_id, name)
        if folder_id is None:
            try:
                folder = _execute_with_retry(self.service.files().create(
                    body={
                        'name': name,
                        'mimeType': FOLDER_MIME_TYPE,
                        'parents': [parent_id],
                    },
                    fields='id',
                    supportsAllDrives=True,
                ))
            except HttpError as e:
                raise StorageError(f"Failed to create folder {join_path(parent, name)}: {e}")
            folder_id = folder['id']
        return FolderInfo(path=join_path(parent, name), name=name, id=folder_id)

    def create_file(self, folder: str, data: bytes, name: str,
                    mime_type: Optional[str] = None) -> FileInfo:
        folder_id = self._get_folder_id(folder)
        media = MediaIoBaseUpload(io.BytesIO(data),
                                  mimetype=mime_type or 'application/octet-stream',
                                  resumable=True)
        try:
            item = _execute_with_retry(self.service.files().create(
                body={'name': name, 'parents': [folder_id]},
                media_body=media,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ))
        except HttpError as e:
            raise StorageError(f"Failed to create file {join_path(folder, name)}: {e}")
        return self._to_file_info(item, folder)

    def upload(self, local_path: str, dest_path: str) -> None:
        """Upload a local file, replacing an existing file of the same name."""
        folder, _, filename = dest_path.rpartition('/')
        parent_id = self._ensure_folders_exist(folder)
        existing = self.find_by_name(folder, filename)
        media = MediaFileUpload(local_path, resumable=True)
        try:
            if existing:
                _execute_with_retry(self.service.files().update(
                    fileId=existing[0].id,
                    media_body=media,
                    supportsAllDrives=True,
                ))
            else:
                _execute_with_retry(self.service.files().create(
                    body={'name': filename, 'parents': [parent_id]},
                    media_body=media,
                    supportsAllDrives=True,
                ))
        except HttpError as e:
            raise StorageError(f"Failed to upload file to {dest_path}: {e}")

    def _ensure_folders_exist(self, folder_path: str) -> str:
        """Ensure all folders in path exist, creating if needed. Returns final folder ID."""
        parent = ""
        folder_id = self.root_folder_id
        for part in [p for p in folder_path.split('/') if p]:
            folder_id = self.get_or_create_folder(parent, part).id
            parent = join_path(parent, part)
        return folder_id

    def move_file(self, file: FileInfo, dest_folder: str) -> FileInfo:
        file_id = file.id or self._require_id(file)
        new_parent_id = self._get_folder_id(dest_folder)
        try:
            item = _execute_with_retry(self.service.files().get(
                fileId=file_id,
                fields="parents",
                supportsAllDrives=True,
            ))
            old_parents = ','.join(item.get('parents') or [])
            moved = _execute_with_retry(self.service.files().update(
                fileId=file_id,
                addParents=new_parent_id,
                removeParents=old_parents,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ))
        except HttpError as e:
            raise StorageError(f"Failed to move {file.path} to {dest_folder}: {e}")
        return self._to_file_info(moved, dest_folder)

    def copy_file(self, file: FileInfo, dest_folder: str,
                  new_name: Optional[str] = None) -> FileInfo:
        file_id = file.id or self._require_id(file)
        dest_id = self._get_folder_id(dest_folder)
        try:
            item = _execute_with_retry(self.service.files().copy(
                fileId=file_id,
                body={'name': new_name or file.name, 'parents': [dest_id]},
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ))
        except HttpError as e:
            raise StorageError(f"Failed to copy {file.path} to {dest_folder}: {e}")
        return self._to_file_info(item, dest_folder)

    def trash(self, file: FileInfo) -> None:
        """Move a file to the Drive trash."""
        file_id = file.id or self._require_id(file)
        try:
            _execute_with_retry(self.service.files().update(
                fileId=file_id,
                body={'trashed': True},
                supportsAllDrives=True,
            ))
        except HttpError as e:
            raise StorageError(f"Failed to trash {file.path}: {e}")

    def sanitize_filename(self, name: str) -> str:
        """Sanitize a filename for Google Drive.

        Google Drive is very permissive - only / is truly forbidden.
        """
        return name.replace('/', '-')
