from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional
from urllib.error import URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from config import Settings, get_settings
from errors import DependencyError


logger = logging.getLogger(__name__)


class BlobStore:
    """Binary payloads for reimbursement attachments.

    Paths are relative, slash separated keys such as
    ``reimbursements/12/receipt.pdf``.
    """

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {path}")
        return target

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise DependencyError(f"Failed to store blob {path}") from exc
        return target.as_uri()

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise DependencyError(f"Failed to delete blob {path}") from exc


class SupabaseBlobStore(BlobStore):
    def __init__(
        self, base_url: str, service_key: str, bucket: str, *, timeout: float
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path)}"

    def _headers(self, content_type: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _send(self, req: Request, path: str) -> None:
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                resp.read()
        except (URLError, TimeoutError) as exc:
            raise DependencyError(
                f"Storage request {req.get_method()} {path} failed"
            ) from exc

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        req = Request(
            self._object_url(path),
            data=content,
            method="POST",
            headers={**self._headers(content_type), "x-upsert": "true"},
        )
        self._send(req, path)
        return (
            f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"
        )

    def delete(self, path: str) -> None:
        req = Request(self._object_url(path), method="DELETE", headers=self._headers())
        self._send(req, path)


def get_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    settings = settings or get_settings()
    backend = (settings.blob_backend or "local").lower()
    logger.info(f"blob_store: backend={backend}")
    if backend == "local":
        return LocalBlobStore(settings.blob_root)
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("Supabase storage requires SUPABASE_URL and a service key")
        return SupabaseBlobStore(
            settings.supabase_url,
            settings.supabase_service_key,
            settings.storage_bucket,
            timeout=settings.storage_timeout_secs,
        )
    raise ValueError(f"Unsupported blob backend: {backend}")
