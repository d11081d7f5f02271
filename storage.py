import logging
import os
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Union
from urllib.parse import urlparse

import httpx

from document_utils import parse_timestamp

logger = logging.getLogger(__name__)

STORAGE_DIR = os.getenv("STORAGE_DIR", "storage")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "documents")
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "http://localhost:5100/storage")
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
STORAGE_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT", "30"))


class StorageError(Exception):
    pass


class Bucket(ABC):
    """A named object-storage bucket addressed by relative POSIX keys."""

    name: str

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        ...

    @abstractmethod
    def download(self, key: str) -> bytes:
        ...

    @abstractmethod
    def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    def remove(self, keys: Iterable[str]) -> List[str]:
        """Delete objects, returning the keys that were actually removed."""

    @abstractmethod
    def list(self, prefix: str = "", limit: int = 100) -> List[dict]:
        """One directory level below ``prefix``, like a bucket listing."""

    @abstractmethod
    def list_objects(self) -> List[dict]:
        """Every object in the bucket as ``{"key", "size", "updated_at"}``."""

    @abstractmethod
    def get_public_url(self, key: str) -> str:
        ...

    def list_all(self) -> List[str]:
        return sorted(entry["key"] for entry in self.list_objects())

    def clear(self):
        self.remove(self.list_all())


class LocalBucket(Bucket):
    """Object-storage bucket backed by a directory on the local filesystem.

    Used for development and tests. ``main`` serves the directory under the
    path of ``STORAGE_PUBLIC_URL`` so public URLs resolve.
    """

    def __init__(self, root: Union[str, Path], name: str = STORAGE_BUCKET,
                 public_base_url: str = STORAGE_PUBLIC_URL):
        self.name = name
        self.base_dir = Path(root)
        self.root = self.base_dir / name
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    @property
    def mount_path(self) -> str:
        return urlparse(self.public_base_url).path or "/storage"

    def _resolve(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or ".." in parts:
            raise StorageError(f"Invalid object path: {key}")
        return self.root.joinpath(*parts)

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        target = self._resolve(key)
        if target.exists() and not upsert:
            raise StorageError(f"The resource already exists: {key}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload failed: {e}") from e
        logger.debug("Stored %s (%s bytes, %s)", key, len(data), content_type)
        return key

    def download(self, key: str) -> bytes:
        target = self._resolve(key)
        if not target.is_file():
            raise StorageError(f"Object not found: {key}")
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Download failed: {e}") from e

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def remove(self, keys: Iterable[str]) -> List[str]:
        removed = []
        for key in keys:
            target = self._resolve(key)
            if target.is_file():
                try:
                    target.unlink()
                except OSError as e:
                    raise StorageError(f"Remove failed for {key}: {e}") from e
                removed.append(key)
        return removed

    def list(self, prefix: str = "", limit: int = 100) -> List[dict]:
        folder = self._resolve(prefix) if prefix else self.root
        if not folder.is_dir():
            return []
        entries = []
        for entry in sorted(folder.iterdir())[:limit]:
            stat = entry.stat()
            entries.append({
                "name": entry.name,
                "is_folder": entry.is_dir(),
                "size": None if entry.is_dir() else stat.st_size,
            })
        return entries

    def list_objects(self) -> List[dict]:
        objects = []
        for path in self.root.rglob("*"):
            if not path.is_file():
                continue
            stat = path.stat()
            objects.append({
                "key": path.relative_to(self.root).as_posix(),
                "size": stat.st_size,
                "updated_at": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).replace(tzinfo=None),
            })
        return objects

    def get_public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.name}/{key}"

    def clear(self):
        shutil.rmtree(self.root, ignore_errors=True)
        self.root.mkdir(parents=True, exist_ok=True)


class SupabaseBucket(Bucket):
    """Bucket stored in Supabase Storage, spoken to over its REST API."""

    def __init__(self, url: str, service_role_key: str, name: str = STORAGE_BUCKET,
                 timeout: float = STORAGE_TIMEOUT, transport: Optional[httpx.BaseTransport] = None):
        self.name = name
        self.url = url.rstrip("/")
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_api_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            with self._client() as client:
                return client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(f"Storage request failed: {e}") from e

    def upload(self, key: str, data: bytes, content_type: Optional[str] = None, upsert: bool = False) -> str:
        response = self._request(
            "POST",
            f"/object/{self.name}/{key}",
            content=data,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "true" if upsert else "false",
            },
        )
        if response.status_code != 200:
            logger.error("Failed to upload %s to Supabase: %s", key, response.text)
            raise StorageError(f"Upload failed: {response.text}")
        return key

    def download(self, key: str) -> bytes:
        response = self._request("GET", f"/object/{self.name}/{key}")
        if response.status_code != 200:
            raise StorageError(f"Download failed for {key}: {response.text}")
        return response.content

    def exists(self, key: str) -> bool:
        return self._request("HEAD", f"/object/{self.name}/{key}").status_code == 200

    def remove(self, keys: Iterable[str]) -> List[str]:
        keys = list(keys)
        if not keys:
            return []
        response = self._request("DELETE", f"/object/{self.name}", json={"prefixes": keys})
        if response.status_code != 200:
            raise StorageError(f"Remove failed: {response.text}")
        return [entry["name"] for entry in response.json()]

    def list(self, prefix: str = "", limit: int = 100) -> List[dict]:
        response = self._request(
            "POST",
            f"/object/list/{self.name}",
            json={"prefix": prefix, "limit": limit, "offset": 0, "sortBy": {"column": "name", "order": "asc"}},
        )
        if response.status_code != 200:
            raise StorageError(f"List failed: {response.text}")
        return [
            {
                "name": entry["name"],
                # folders come back without an id
                "is_folder": entry.get("id") is None,
                "size": (entry.get("metadata") or {}).get("size"),
                "updated_at": entry.get("updated_at"),
            }
            for entry in response.json()
        ]

    def list_objects(self) -> List[dict]:
        objects, pending = [], [""]
        while pending:
            prefix = pending.pop()
            for entry in self.list(prefix, limit=1000):
                key = f"{prefix}/{entry['name']}" if prefix else entry["name"]
                if entry["is_folder"]:
                    pending.append(key)
                else:
                    objects.append({
                        "key": key,
                        "size": entry["size"],
                        "updated_at": parse_timestamp(entry["updated_at"]) if entry["updated_at"] else None,
                    })
        return objects

    def get_public_url(self, key: str) -> str:
        return f"{self.base_api_url}/object/public/{self.name}/{key}"


_bucket: Optional[Bucket] = None


def get_storage() -> Bucket:
    global _bucket
    if _bucket is None:
        if SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY:
            _bucket = SupabaseBucket(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
        else:
            _bucket = LocalBucket(STORAGE_DIR)
        logger.info("Object storage: %s bucket %s", type(_bucket).__name__, _bucket.name)
    return _bucket
