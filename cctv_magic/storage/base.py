from abc import ABC, abstractmethod
from typing import BinaryIO

from cctv_magic.core.config import get_settings


class StorageBackend(ABC):
    @abstractmethod
    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        """Store object under key (overwriting); return its public URL."""
        ...

    @abstractmethod
    def public_url(self, key: str) -> str:
        """URL end users can fetch without provider credentials."""
        ...


def _read(body: BinaryIO | bytes) -> bytes:
    return body if isinstance(body, bytes) else body.read()


def get_storage() -> StorageBackend:
    settings = get_settings()
    if settings.storage_backend == "gcs":
        from cctv_magic.storage.gcs import GCSStorage
        return GCSStorage()
    if settings.storage_backend == "supabase":
        from cctv_magic.storage.supabase import SupabaseStorage
        return SupabaseStorage()
    from cctv_magic.storage.local import LocalStorage
    return LocalStorage()
