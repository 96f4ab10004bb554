"""Object storage collaborators. File bytes never pass through the database."""
import logging
import time
from typing import Dict, Protocol, Tuple

import httpx

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class ObjectStorage(Protocol):
    def put_object(self, path: str, data: bytes, content_type: str) -> str: ...

    def get_signed_url(self, path: str, ttl_seconds: int) -> str: ...

    def delete_object(self, path: str) -> None: ...


class SupabaseStorage:
    """Supabase Storage REST API, authenticated with the service role key."""

    def __init__(self, base_url: str, service_key: str, bucket: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {service_key}", "apikey": service_key}

    def _url(self, suffix: str) -> str:
        return f"{self.base_url}/storage/v1/{suffix}"

    def put_object(self, path: str, data: bytes, content_type: str) -> str:
        logger.debug(f"[Storage] PUT {self.bucket}/{path} ({len(data)} bytes)")
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self._url(f"object/{self.bucket}/{path}"),
                    content=data,
                    headers={**self.headers, "Content-Type": content_type, "x-upsert": "false"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[Storage] Upload failed for {path}: {e}")
            raise StorageError(f"Failed to upload {path}") from e
        return path

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    self._url(f"object/sign/{self.bucket}/{path}"),
                    json={"expiresIn": ttl_seconds},
                    headers=self.headers,
                )
                response.raise_for_status()
                signed = response.json().get("signedURL")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[Storage] Signing failed for {path}: {e}")
            raise StorageError(f"Failed to sign {path}") from e
        if not signed:
            raise StorageError(f"Storage returned no signed URL for {path}")
        return self._url(signed.lstrip("/"))

    def delete_object(self, path: str) -> None:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(
                    "DELETE",
                    self._url(f"object/{self.bucket}"),
                    json={"prefixes": [path]},
                    headers=self.headers,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[Storage] Delete failed for {path}: {e}")
            raise StorageError(f"Failed to delete {path}") from e


class InMemoryStorage:
    """Process-local storage for tests and local runs without a storage service."""

    def __init__(self, bucket: str = "documents"):
        self.bucket = bucket
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    def put_object(self, path: str, data: bytes, content_type: str) -> str:
        if path in self.objects:
            raise StorageError(f"Object {path} already exists")
        self.objects[path] = (data, content_type)
        return path

    def get_signed_url(self, path: str, ttl_seconds: int) -> str:
        if path not in self.objects:
            raise StorageError(f"Object {path} not found")
        return f"memory://{self.bucket}/{path}?expires={int(time.time()) + ttl_seconds}"

    def delete_object(self, path: str) -> None:
        if self.objects.pop(path, None) is None:
            raise StorageError(f"Object {path} not found")
