import logging
import os

import aiofiles

from pitchperfect.config import settings

logger = logging.getLogger(__name__)

RECORDING_EXTENSIONS = {".webm", ".wav", ".mp3", ".ogg", ".m4a", ".mp4"}


def presenter_recording_key(session_id: str, filename: str | None = None) -> str:
    """Fixed storage key for the presenter's own recording; only the extension is taken from *filename*."""
    ext = os.path.splitext(os.path.basename(filename or ""))[1].lower()
    if ext not in RECORDING_EXTENSIONS:
        ext = ".webm"
    return f"recordings/{session_id}/presenter{ext}"


class StorageService:
    """Local filesystem storage service.

    Files are stored under ``settings.storage_dir`` and served by FastAPI via
    the ``/api/files/{path}`` route defined in ``main.py``.
    """

    def __init__(self, base_dir: str | None = None):
        self.base_dir = base_dir or settings.storage_dir
        os.makedirs(self.base_dir, exist_ok=True)

    def path_for(self, key: str) -> str:
        full_path = os.path.realpath(os.path.join(self.base_dir, key))
        # Keys never leave the storage directory
        if not full_path.startswith(os.path.realpath(self.base_dir) + os.sep):
            raise ValueError(f"Storage key escapes storage directory: {key!r}")
        return full_path

    async def upload(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Write *data* to ``{storage_dir}/{key}``."""
        full_path = self.path_for(key)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        async with aiofiles.open(full_path, "wb") as f:
            await f.write(data)
        logger.debug(f"Stored {len(data)} bytes ({content_type}) at {full_path}")
        return key

    async def append(self, key: str, data: bytes) -> str:
        """Append a recorder chunk to ``{storage_dir}/{key}``."""
        full_path = self.path_for(key)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        async with aiofiles.open(full_path, "ab") as f:
            await f.write(data)
        return key

    async def read(self, key: str) -> bytes:
        async with aiofiles.open(self.path_for(key), "rb") as f:
            return await f.read()

    async def get_url(self, key: str) -> str:
        """Return the URL path served by FastAPI's static file route."""
        return f"/api/files/{key}"

    async def delete(self, key: str) -> None:
        """Remove a file from disk."""
        try:
            os.remove(self.path_for(key))
        except FileNotFoundError:
            pass

    async def exists(self, key: str) -> bool:
        return os.path.isfile(self.path_for(key))
