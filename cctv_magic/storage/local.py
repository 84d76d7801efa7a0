from pathlib import Path
from typing import BinaryIO

from cctv_magic.core.config import get_settings
from cctv_magic.storage.base import StorageBackend, _read


class LocalStorage(StorageBackend):
    """Files on disk, served by the app's /media static mount."""

    def __init__(self, root: str | Path | None = None, public_base_url: str | None = None) -> None:
        settings = get_settings()
        self.root = Path(root or settings.storage_local_path)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or settings.storage_public_base_url).rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_read(body))
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"
