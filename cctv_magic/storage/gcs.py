from typing import BinaryIO

from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from cctv_magic.core.config import get_settings
from cctv_magic.storage.base import StorageBackend, _read


class GCSStorage(StorageBackend):
    """Public-read GCS bucket; objects addressed by storage.googleapis.com URLs."""

    def __init__(self) -> None:
        settings = get_settings()
        self.bucket_name = settings.gcs_bucket_name or "cctv-magic-videos"
        self._client = storage.Client()
        self._bucket = self._client.bucket(self.bucket_name)

    async def put(self, key: str, body: BinaryIO | bytes, content_type: str | None = None) -> str:
        blob = self._bucket.blob(key)
        await run_in_threadpool(
            blob.upload_from_string,
            _read(body),
            content_type=content_type or "application/octet-stream",
        )
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{key}"
