"""
Blob storage for uploaded documents.

Two backends share the same ``put``/``get``/``delete`` contract:
the local filesystem (default, used in development and tests) and S3.
Every failure surfaces as ``StorageError``.
"""

import logging
import os
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from services.errors import BlobExists, StorageError

logger = logging.getLogger("services.storage")


class LocalStorageGateway:
    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return target

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """Write a new blob; an existing key is never overwritten."""
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "xb") as f:
                f.write(data)
        except FileExistsError as err:
            raise BlobExists(f"Storage key already in use: {path}") from err
        except OSError as err:
            logger.error("storage_put_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to store {path}") from err

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            with open(target, "rb") as f:
                return f.read()
        except OSError as err:
            logger.error("storage_get_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to read {path}") from err

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
        except OSError as err:
            logger.error("storage_delete_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to delete {path}") from err


class S3StorageGateway:
    def __init__(self, bucket: str, region: str = "us-east-1", client=None):
        self._bucket = bucket
        self._s3_client = client or boto3.client("s3", region_name=region)

    def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        try:
            self._s3_client.put_object(
                Bucket=self._bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as err:
            if err.response.get("Error", {}).get("Code") in ("PreconditionFailed", "ConditionalRequestConflict"):
                raise BlobExists(f"Storage key already in use: {path}") from err
            logger.error("storage_put_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to store {path}") from err
        except BotoCoreError as err:
            logger.error("storage_put_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to store {path}") from err

    def get(self, path: str) -> bytes:
        try:
            response = self._s3_client.get_object(Bucket=self._bucket, Key=path)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as err:
            logger.error("storage_get_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to read {path}") from err

    def delete(self, path: str) -> None:
        try:
            self._s3_client.delete_object(Bucket=self._bucket, Key=path)
        except (BotoCoreError, ClientError) as err:
            logger.error("storage_delete_failed", extra={"storage_key": path}, exc_info=True)
            raise StorageError(f"Failed to delete {path}") from err


def get_storage_gateway():
    if os.getenv("STORAGE_BACKEND", "local").lower() == "s3":
        return S3StorageGateway(
            bucket=os.environ["S3_BUCKET"],
            region=os.getenv("AWS_REGION", "us-east-1"),
        )
    return LocalStorageGateway(Path(os.getenv("STORAGE_DIR", "uploads")))
