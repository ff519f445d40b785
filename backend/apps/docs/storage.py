"""
Temporary upload storage.

Uploaded files are spooled to a scoped artifact under UPLOAD_ROOT only for
as long as text extraction needs them. The artifact is removed on every
exit path of the `temporary_upload` block; the service keeps no copy of
the original file.

Disk writes and removal run in a worker thread, never on the event loop.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from asgiref.sync import sync_to_async
from django.conf import settings

from apps.rag.errors import StorageError

logger = logging.getLogger(__name__)


class UploadSpool:
    """
    Spools uploaded files to the local filesystem.

    Files are written to: {UPLOAD_ROOT}/{random uuid}{extension}
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = Path(root or settings.UPLOAD_ROOT)
        self._ensure_root_exists()

    def _ensure_root_exists(self) -> None:
        """Create the upload root directory if it doesn't exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create upload root {self.root}: {e}")
            raise StorageError(f"Cannot create upload directory: {e}")

    def spool(self, uploaded_file, extension: str = '') -> Path:
        """
        Write an uploaded file to a fresh artifact.

        Args:
            uploaded_file: Django UploadedFile (anything with chunks())
            extension: File extension (e.g., '.pdf')

        Returns:
            Path of the written artifact

        Raises:
            StorageError: If the file cannot be written
        """
        if extension and not extension.startswith('.'):
            extension = f'.{extension}'

        filepath = self.root / f"{uuid.uuid4()}{extension}"

        try:
            with open(filepath, 'wb') as dest:
                for chunk in uploaded_file.chunks():
                    dest.write(chunk)
        except OSError as e:
            logger.error(f"Failed to spool upload to {filepath.name}: {e}")
            self.discard(filepath)
            raise StorageError(f"Failed to store upload: {e}")

        logger.debug(f"Spooled upload: {filepath.name} ({filepath.stat().st_size} bytes)")
        return filepath

    def discard(self, filepath: Path) -> None:
        """Remove an artifact; a missing file is not an error."""
        try:
            filepath.unlink(missing_ok=True)
        except OSError as e:
            # Leftover artifacts are logged, the request outcome stands
            logger.error(f"Failed to remove temporary upload {filepath.name}: {e}")

    @asynccontextmanager
    async def temporary_upload(self, uploaded_file, extension: str = '') -> AsyncIterator[Path]:
        """
        Spool an upload for the duration of an async with-block.

        Writing and removal run in a worker thread via sync_to_async.

        Usage:
            async with spool.temporary_upload(request.FILES['file'], '.pdf') as path:
                text = await sync_to_async(extract_text)(path, content_type)
        """
        filepath = await sync_to_async(self.spool)(uploaded_file, extension)
        try:
            yield filepath
        finally:
            await sync_to_async(self.discard)(filepath)
            logger.debug(f"Removed temporary upload {filepath.name}")


_spool: Optional[UploadSpool] = None


def get_spool() -> UploadSpool:
    """Get the upload spool instance (lazy initialization)."""
    global _spool
    if _spool is None:
        _spool = UploadSpool()
    return _spool


def reset_spool() -> None:
    """Forget the cached spool so the next call re-reads UPLOAD_ROOT."""
    global _spool
    _spool = None
