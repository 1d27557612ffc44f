"""
Object storage backends for uploaded medical files.

Both backends address blobs by a flat path inside one bucket and expose the
same four calls: upload, get_public_url, download and remove.
"""

import logging
import os
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from medrecords.config import AWS_REGION, LOCAL_STORAGE_DIR, STORAGE_BACKEND, STORAGE_BUCKET
from medrecords.errors import DownloadError, NotFound, UploadError

logger = logging.getLogger(__name__)


def _check_path(path: str) -> str:
    if not path or path != os.path.basename(path) or path in (".", ".."):
        raise ValueError(f"Invalid storage path: {path!r}")
    return path


class ObjectStorage:
    """Interface shared by the storage backends."""

    bucket: str

    def upload(self, path: str, data: bytes, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def get_public_url(self, path: str) -> str:
        raise NotImplementedError

    def download(self, path: str) -> bytes:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class S3Storage(ObjectStorage):
    def __init__(self, bucket: str = STORAGE_BUCKET, region: str = AWS_REGION, client=None):
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client("s3", region_name=region)

    def upload(self, path, data, content_type=None):
        kwargs = {"Bucket": self.bucket, "Key": _check_path(path), "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except ClientError as e:
            raise UploadError(f"S3 upload failed: {e.response['Error']['Message']}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload failed: {e}")
        logger.info("S3 upload successful for key: %s", path)
        return path

    def get_public_url(self, path):
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{_check_path(path)}"

    def download(self, path):
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=_check_path(path))
            return obj["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in ("NoSuchKey", "404"):
                raise NotFound(f"File '{path}' not found.")
            raise DownloadError(f"S3 download failed: {e.response['Error']['Message']}")
        except BotoCoreError as e:
            raise DownloadError(f"S3 download failed: {e}")

    def remove(self, path):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=_check_path(path))
        except ClientError as e:
            raise UploadError(f"S3 delete failed: {e.response['Error']['Message']}")
        except BotoCoreError as e:
            raise UploadError(f"S3 delete failed: {e}")
        logger.info("S3 delete successful for key: %s", path)

    def ping(self):
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError):
            logger.exception("S3 health check failed")
            return False


class LocalStorage(ObjectStorage):
    """Stores blobs as files under ``<root>/<bucket>/``."""

    def __init__(self, root: Optional[str] = None, bucket: str = STORAGE_BUCKET):
        self.bucket = bucket
        self.directory = os.path.abspath(os.path.join(root or LOCAL_STORAGE_DIR, bucket))
        os.makedirs(self.directory, exist_ok=True)

    def _file(self, path: str) -> str:
        return os.path.join(self.directory, _check_path(path))

    def upload(self, path, data, content_type=None):
        target = self._file(path)
        try:
            with open(target, "xb") as f:
                f.write(data)
        except FileExistsError:
            raise UploadError(f"The resource already exists: {path}")
        except OSError as e:
            raise UploadError(f"Local upload failed: {e}")
        logger.info("Stored %d bytes at %s", len(data), path)
        return path

    def get_public_url(self, path):
        return f"file://{self._file(path)}"

    def download(self, path):
        try:
            with open(self._file(path), "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFound(f"File '{path}' not found.")
        except OSError as e:
            raise DownloadError(f"Local download failed: {e}")

    def remove(self, path):
        os.remove(self._file(path))

    def ping(self):
        return os.path.isdir(self.directory)


def init_storage(backend: str = STORAGE_BACKEND) -> ObjectStorage:
    """Build the storage backend named by STORAGE_BACKEND."""
    if backend == "s3":
        storage = S3Storage()
    elif backend == "local":
        storage = LocalStorage()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")
    logger.info("Using %s storage (bucket=%s)", backend, storage.bucket)
    return storage
