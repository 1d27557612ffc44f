"""
Unit tests for file transfer and the upload-then-record workflow.
"""

import logging
import re

import pytest

from medrecords.errors import (
    AccessDenied,
    NotFound,
    StoreUnavailable,
    UploadError,
    UploadRejected,
    ValidationError,
)
from medrecords.models import UploadedFile
from medrecords.records import list_records_for_patient
from medrecords.storage import LocalStorage
from medrecords.transfer import (
    download,
    download_record,
    file_extension,
    make_storage_path,
    storage_key,
    upload,
    upload_record,
)


# ── Helpers / Fakes ──────────────────────────────────────────────────

class RecordingStorage(LocalStorage):
    """LocalStorage that remembers every call and can be told to fail."""
    def __init__(self, root, fail_upload=False, fail_remove=False):
        super().__init__(root=root, bucket="medical-files")
        self.calls = []
        self.fail_upload = fail_upload
        self.fail_remove = fail_remove

    def upload(self, path, data, content_type=None):
        self.calls.append(("upload", path))
        if self.fail_upload:
            raise UploadError("network unreachable")
        return super().upload(path, data, content_type)

    def remove(self, path):
        self.calls.append(("remove", path))
        if self.fail_remove:
            raise OSError("bucket is read-only")
        super().remove(path)


@pytest.fixture
def recording(tmp_path):
    return RecordingStorage(str(tmp_path))


@pytest.fixture
def clinic(sign_up):
    _, doctor = sign_up("house@clinic.org", "doctor", "Gregory House")
    _, alice = sign_up("alice@mail.org", "patient", "Alice Zed")
    _, bob = sign_up("bob@mail.org", "patient", "Bob Young")
    return doctor, alice, bob


PDF = UploadedFile("report.pdf", b"%PDF-1.4 body", "application/pdf")


# ── Tests: paths ─────────────────────────────────────────────────────

def test_make_storage_path_shape():
    path = make_storage_path("Blood Test (final).PDF", now_ms=1700000000123)
    assert re.fullmatch(r"1700000000123_[a-z0-9]{6}\.pdf", path)
    assert "Blood" not in path


def test_make_storage_path_without_extension():
    assert re.fullmatch(r"\d+_[a-z0-9]{6}", make_storage_path("README"))


def test_make_storage_path_unique_for_same_name():
    paths = {make_storage_path("a.pdf", now_ms=1) for _ in range(50)}
    assert len(paths) == 50


def test_file_extension():
    assert file_extension("x.tar.JPG") == "jpg"
    assert file_extension(".hidden") == ""
    assert file_extension("noext") == ""


def test_storage_key_accepts_url_or_path():
    assert storage_key("https://b.s3.amazonaws.com/1_ab.pdf") == "1_ab.pdf"
    assert storage_key("1_ab.pdf") == "1_ab.pdf"


# ── Tests: upload / download ─────────────────────────────────────────

def test_upload_and_download(recording):
    path = upload(recording, PDF)
    assert path.endswith(".pdf")
    assert download(recording, path) == PDF.data


def test_upload_rejects_unsupported_type(recording):
    with pytest.raises(UploadRejected, match="Accepted formats"):
        upload(recording, UploadedFile("virus.exe", b"MZ"))
    assert recording.calls == []


def test_upload_rejects_oversized_file(recording, monkeypatch):
    monkeypatch.setattr("medrecords.transfer.MAX_UPLOAD_BYTES", 4)
    with pytest.raises(UploadRejected, match="too large"):
        upload(recording, UploadedFile("big.pdf", b"12345"))


def test_download_missing_is_not_found(recording):
    with pytest.raises(NotFound):
        download(recording, "123_gone.pdf")


# ── Tests: upload_record ─────────────────────────────────────────────

def test_upload_record_round_trip(engine, recording, clinic):
    doctor, alice, _ = clinic
    record = upload_record(engine, recording, doctor, alice.principal_id, PDF, "follow-up")

    records = list_records_for_patient(engine, alice, alice.principal_id)
    assert len(records) == 1
    assert records[0].file_name == "report.pdf"
    assert records[0].notes == "follow-up"
    assert records[0].file_url == record.file_url != "report.pdf"
    assert records[0].doctor_name == "Gregory House"

    fetched, data = download_record(engine, recording, alice, record.id)
    assert fetched.file_name == "report.pdf"
    assert data == PDF.data


@pytest.mark.parametrize("patient_id,file", [(None, PDF), ("", PDF), ("someone", None)])
def test_upload_record_requires_patient_and_file(engine, recording, clinic, patient_id, file):
    doctor, _, _ = clinic
    with pytest.raises(ValidationError, match="select a patient and file"):
        upload_record(engine, recording, doctor, patient_id, file)
    assert recording.calls == []


def test_upload_record_patient_cannot_upload(engine, recording, clinic):
    _, alice, bob = clinic
    with pytest.raises(AccessDenied):
        upload_record(engine, recording, alice, bob.principal_id, PDF)
    assert recording.calls == []


def test_upload_failure_creates_no_record(engine, tmp_path, clinic):
    doctor, alice, _ = clinic
    failing = RecordingStorage(str(tmp_path), fail_upload=True)
    with pytest.raises(UploadError):
        upload_record(engine, failing, doctor, alice.principal_id, PDF)
    assert list_records_for_patient(engine, alice, alice.principal_id) == []


def test_insert_failure_removes_uploaded_blob(engine, recording, clinic):
    doctor, _, _ = clinic
    with pytest.raises(ValidationError, match="does not exist"):
        upload_record(engine, recording, doctor, "no-such-patient", PDF)

    (_, path), (op, removed) = recording.calls
    assert op == "remove" and removed == path
    with pytest.raises(NotFound):
        recording.download(path)


def test_orphaned_blob_is_logged(engine, tmp_path, clinic, monkeypatch, caplog):
    doctor, alice, _ = clinic
    storage = RecordingStorage(str(tmp_path), fail_remove=True)

    def broken_insert(*args, **kwargs):
        raise StoreUnavailable("Failed to save medical record: db down")

    monkeypatch.setattr("medrecords.transfer.create_record", broken_insert)

    with caplog.at_level(logging.WARNING, logger="medrecords.transfer"):
        with pytest.raises(StoreUnavailable, match="db down"):
            upload_record(engine, storage, doctor, alice.principal_id, PDF)

    path = storage.calls[0][1]
    assert "Orphaned blob" in caplog.text
    assert path in caplog.text


# ── Tests: download_record ───────────────────────────────────────────

def test_other_patient_cannot_download(engine, recording, clinic):
    doctor, alice, bob = clinic
    record = upload_record(engine, recording, doctor, alice.principal_id, PDF)
    with pytest.raises(AccessDenied):
        download_record(engine, recording, bob, record.id)


def test_doctor_cannot_download(engine, recording, clinic):
    doctor, alice, _ = clinic
    record = upload_record(engine, recording, doctor, alice.principal_id, PDF)
    with pytest.raises(AccessDenied):
        download_record(engine, recording, doctor, record.id)


def test_download_unknown_record(engine, recording, clinic):
    _, alice, _ = clinic
    with pytest.raises(NotFound):
        download_record(engine, recording, alice, "missing")
