"""
File transfer – moving medical files into and out of object storage, and the
upload workflow that turns a stored file into a Record.
"""

import logging
import secrets
import string
import time
from typing import Optional, Tuple

from sqlalchemy.engine import Engine

from medrecords.config import ALLOWED_EXTENSIONS, MAX_UPLOAD_BYTES
from medrecords.errors import AccessDenied, NotFound, StoreError, UploadRejected, ValidationError
from medrecords.models import AccessContext, Record, UploadedFile
from medrecords.rbac import CREATE_RECORD, DOWNLOAD_OWN_RECORD, build_policy, require
from medrecords.records import create_record, get_record
from medrecords.storage import ObjectStorage

logger = logging.getLogger(__name__)

SUFFIX_CHARS = string.ascii_lowercase + string.digits


# ── Paths ────────────────────────────────────────────────────────────

def file_extension(file_name: str) -> str:
    """Lower-cased extension without the dot, or "" when there is none."""
    base = (file_name or "").rsplit("/", 1)[-1]
    if "." not in base.strip("."):
        return ""
    return base.rsplit(".", 1)[-1].lower()


def make_storage_path(file_name: str, now_ms: Optional[int] = None, suffix_length: int = 6) -> str:
    """Collision-resistant storage path: ``<epoch ms>_<random base36>[.<ext>]``.

    The original name is dropped; only its extension survives.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(SUFFIX_CHARS) for _ in range(suffix_length))
    ext = file_extension(file_name)
    return f"{now_ms}_{suffix}.{ext}" if ext else f"{now_ms}_{suffix}"


def storage_key(path_or_url: str) -> str:
    """Accept a bare storage path or a URL and return the storage path."""
    return (path_or_url or "").rstrip("/").split("/")[-1]


# ── Upload / download ────────────────────────────────────────────────

def validate_file(file: UploadedFile) -> None:
    ext = file_extension(file.file_name)
    if ext not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(sorted(e.upper() for e in ALLOWED_EXTENSIONS))
        raise UploadRejected(f"Unsupported file type. Accepted formats: {allowed}")
    if file.size > MAX_UPLOAD_BYTES:
        raise UploadRejected(
            f"File is too large ({file.size} bytes, limit {MAX_UPLOAD_BYTES})."
        )


def upload(storage: ObjectStorage, file: UploadedFile,
           destination_path: Optional[str] = None) -> str:
    """Write *file* to storage and return the path it was stored under."""
    validate_file(file)
    path = destination_path or make_storage_path(file.file_name)
    return storage.upload(path, file.data, file.content_type)


def download(storage: ObjectStorage, path: str) -> bytes:
    key = storage_key(path)
    if not key:
        raise NotFound("No file path given.")
    return storage.download(key)


# ── Workflows ────────────────────────────────────────────────────────

def upload_record(engine: Engine, storage: ObjectStorage, ctx: AccessContext,
                  patient_id: Optional[str], file: Optional[UploadedFile],
                  notes: Optional[str] = None) -> Record:
    """Upload a file for a patient and record it.

    Missing patient or file is rejected before any I/O. If the record insert
    fails after the upload succeeded, the blob is removed again; a blob that
    cannot be removed is logged as orphaned and the insert error is re-raised.
    """
    if not patient_id or file is None or not file.file_name:
        raise ValidationError("Please select a patient and file")
    require(build_policy(ctx), CREATE_RECORD)

    path = upload(storage, file)

    try:
        return create_record(
            engine,
            patient_id=patient_id,
            doctor_id=ctx.principal_id,
            file_name=file.file_name,
            file_url=path,
            file_type=file.content_type,
            notes=notes,
        )
    except (StoreError, ValidationError):
        try:
            storage.remove(path)
            logger.info("Removed blob %s after failed record insert", path)
        except Exception:
            logger.warning("Orphaned blob left in bucket %s: %s", storage.bucket, path,
                           exc_info=True)
        raise


def download_record(engine: Engine, storage: ObjectStorage, ctx: AccessContext,
                    record_id: str) -> Tuple[Record, bytes]:
    """Fetch a record's bytes for its owning patient."""
    policy = build_policy(ctx)
    require(policy, DOWNLOAD_OWN_RECORD)
    record = get_record(engine, record_id)
    if record is None:
        raise NotFound("Medical record not found.")
    if record.patient_id != policy.record_scope_patient_id:
        raise AccessDenied("You can only access your own medical records.")
    return record, download(storage, record.file_url)
