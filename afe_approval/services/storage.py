from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from afe_approval.core.config import settings
from afe_approval.core.exceptions import StorageError

PDF_ROOT = "afes"


def resolve_storage_root() -> Path:
    """
    Directory where every blob is written when no S3 bucket is configured.
    ``AFE_STORAGE`` in the environment wins over the settings file.
    """
    raw = os.getenv("AFE_STORAGE") or settings.afe_storage or "_storage"
    return Path(raw).expanduser().resolve()


def new_pdf_name() -> str:
    return f"{uuid.uuid4()}.pdf"


def final_pdf_name(afe_id: Any) -> str:
    return f"final-{afe_id}.pdf"


class StorageBackend(Protocol):
    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:  # returns storage path/URL
        ...

    def load_bytes(self, path: str) -> bytes:
        ...


@dataclass
class LocalStorage:
    base_dir: Path

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        target_dir = self.base_dir / root
        target_dir.mkdir(parents=True, exist_ok=True)
        file_path = target_dir / name
        file_path.write_bytes(data)
        # stored relative so the storage directory can move
        return f"{root.strip('/')}/{name}"

    def load_bytes(self, path: str) -> bytes:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.base_dir / path
        candidate = candidate.resolve()
        if self.base_dir not in candidate.parents:
            raise StorageError(f"Path {path!r} is outside the storage directory")
        if not candidate.is_file():
            raise StorageError(f"File {path!r} was not found in storage")
        return candidate.read_bytes()


@dataclass
class S3Storage:
    bucket: str
    client: Any

    def save_bytes(self, *, root: str, name: str, data: bytes) -> str:
        key = f"{root.strip('/')}/{name}"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType="application/pdf")
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not upload {key!r}: {exc}") from exc
        return f"s3://{self.bucket}/{key}"

    def load_bytes(self, path: str) -> bytes:
        if not path.startswith("s3://"):
            raise StorageError("Expected s3:// path for S3 storage")
        _, rest = path.split("s3://", 1)
        bucket, key = rest.split("/", 1)
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"File {path!r} was not found in storage") from exc
        body = response.get("Body")
        return body.read() if body else b""


def get_storage() -> StorageBackend:
    if os.getenv("AFE_STORAGE"):
        return LocalStorage(base_dir=resolve_storage_root())

    if settings.s3_endpoint_url and settings.s3_access_key and settings.s3_secret_key and settings.s3_bucket_documents:
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name=os.getenv("AWS_REGION", "us-east-1"),
        )
        return S3Storage(bucket=settings.s3_bucket_documents, client=client)

    return LocalStorage(base_dir=resolve_storage_root())
