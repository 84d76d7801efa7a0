from typing import BinaryIO

from starlette.concurrency import run_in_threadpool
from supabase import Client, create_client

from cctv_magic.core.config import get_settings
from cctv_magic.storage.base import StorageBackend, _read


class SupabaseStorage(StorageBackend):
    """Supabase Storage bucket (public). Uses the service role key, server side only."""

    def __init__(self, client: Client | None = None, bucket: str | None = None) -> None:
        settings = get_settings()
        if client is None:
            if not settings.supabase_url or not settings.supabase_service_role_key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for supabase storage")
            client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        self.bucket_name = bucket or settings.supabase_storage_bucket
        self._bucket = client.storage.from_(self.bucket_name)

    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        await run_in_threadpool(
            self._bucket.upload,
            key,
            _read(body),
            {"content-type": content_type or "application/octet-stream", "upsert": "true"},
        )
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return self._bucket.get_public_url(key)
