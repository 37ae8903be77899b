"""
Byte storage for vendor uploads.

The governance core only ever sees attachment metadata; this module is used
by the HTTP layer to put the bytes somewhere (local disk in development,
an S3-compatible bucket in production) and hand back a ``StoredObject``.
"""
from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import cached_property
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

from app.vendorflow.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    size_bytes: int
    content_type: str


class Storage:
    def put(self, key: str, data: bytes, content_type: str | None = None) -> StoredObject:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def discard(self, objects: Iterable[StoredObject]) -> None:
        """Best-effort removal of uploads whose document was never written."""
        for obj in objects:
            try:
                self.delete(obj.key)
            except StorageError as e:
                logger.warning("Could not remove orphaned upload %s: %s", obj.key, e)


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        p = (root / key.replace("\\", "/").lstrip("/")).resolve()
        if root not in p.parents:
            raise StorageError(f"Invalid storage key: {key!r}")
        return p

    def put(self, key: str, data: bytes, content_type: str | None = None) -> StoredObject:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e
        return StoredObject(key, len(data), content_type or DEFAULT_CONTENT_TYPE)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        try:
            return p.open("rb")
        except OSError as e:
            raise StorageError(f"Download failed for {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Delete failed for {key}: {e}") from e


@dataclass
class S3Storage(Storage):
    bucket: str
    endpoint: str = ""
    region: str = ""
    access_key_id: str = field(default="", repr=False)
    secret_access_key: str = field(default="", repr=False)

    @cached_property
    def client(self) -> Any:
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
        )

    def put(self, key: str, data: bytes, content_type: str | None = None) -> StoredObject:
        ctype = content_type or DEFAULT_CONTENT_TYPE
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=ctype)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload failed for {key}: {e}") from e
        return StoredObject(key, len(data), ctype)

    def open(self, key: str) -> BinaryIO:
        try:
            return self.client.get_object(Bucket=self.bucket, Key=key)["Body"]
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Download failed for {key}: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Lookup failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Lookup failed for {key}: {e}") from e
        return True

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Delete failed for {key}: {e}") from e


def storage_from_config(config: dict) -> Storage:
    if (config.get("STORAGE_BACKEND") or "local").strip().lower() == "s3":
        return S3Storage(
            bucket=(config.get("S3_BUCKET") or "").strip(),
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    return LocalStorage(root=Path(config.get("STORAGE_LOCAL_ROOT") or Path(os.getcwd()) / "storage"))


def vendor_document_key(vendor_id: int, document_type: str, filename: str) -> str:
    """vendors/<id>/<TYPE>/<timestamp>_<short uuid>_<safe name>"""
    ts = utcnow().strftime("%Y%m%d_%H%M%S")
    safe_name = secure_filename(filename or "") or "document"
    return f"vendors/{vendor_id}/{document_type}/{ts}_{uuid.uuid4().hex[:8]}_{safe_name}"
