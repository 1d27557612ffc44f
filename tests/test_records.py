"""
Unit tests for the record store adapter.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from medrecords.database import medical_records
from medrecords.errors import AccessDenied, StoreUnavailable, ValidationError
from medrecords.models import Profile
from medrecords.records import (
    create_record,
    get_record,
    list_patients,
    list_records_for_patient,
    search_patients,
)


class FailingConn:
    def execute(self, *args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("connection reset"))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FailingEngine:
    def begin(self):
        return FailingConn()

    def connect(self):
        return FailingConn()


@pytest.fixture
def clinic(sign_up):
    _, doctor = sign_up("house@clinic.org", "doctor", "Gregory House")
    _, alice = sign_up("alice@mail.org", "patient", "Alice Zed")
    _, bob = sign_up("bob@mail.org", "patient", "Bob Young")
    return doctor, alice, bob


def _record(engine, patient, doctor, name, **kwargs):
    return create_record(engine, patient.principal_id, doctor.principal_id,
                         name, f"path-{name}", **kwargs)


# ── Tests: patients ──────────────────────────────────────────────────

def test_list_patients_ordered_by_name(engine, clinic, sign_up):
    doctor, _, _ = clinic
    sign_up("aaron@mail.org", "patient", "Aaron Able")

    names = [p.full_name for p in list_patients(engine, doctor)]
    assert names == ["Aaron Able", "Alice Zed", "Bob Young"]


def test_list_patients_doctor_only(engine, clinic):
    _, alice, _ = clinic
    with pytest.raises(AccessDenied):
        list_patients(engine, alice)


def test_search_patients_name_or_email_case_insensitive():
    patients = [
        Profile("1", "Alice Zed", "alice@mail.org", "patient"),
        Profile("2", "Bob Young", "bob@work.com", "patient"),
        Profile("3", "Carol", "carol@MAIL.org", "patient"),
    ]
    assert [p.id for p in search_patients("ALI", patients)] == ["1"]
    assert [p.id for p in search_patients("mail.org", patients)] == ["1", "3"]
    assert search_patients("zzz", patients) == []


def test_search_patients_empty_query_and_idempotence():
    patients = [
        Profile("1", "Alice Zed", "alice@mail.org", "patient"),
        Profile("2", "Bob Young", "bob@work.com", "patient"),
    ]
    assert search_patients("", patients) == patients
    once = search_patients("o", patients)
    assert search_patients("o", once) == once


# ── Tests: create_record ─────────────────────────────────────────────

def test_create_record_requires_ids(engine, clinic):
    doctor, alice, _ = clinic
    with pytest.raises(ValidationError):
        create_record(engine, "", doctor.principal_id, "a.pdf", "p1.pdf")
    with pytest.raises(ValidationError):
        create_record(engine, alice.principal_id, None, "a.pdf", "p1.pdf")


def test_create_record_rejects_wrong_roles(engine, clinic):
    doctor, alice, bob = clinic
    with pytest.raises(ValidationError, match="Doctor"):
        create_record(engine, alice.principal_id, bob.principal_id, "a.pdf", "p1.pdf")
    with pytest.raises(ValidationError, match="Patient"):
        create_record(engine, doctor.principal_id, doctor.principal_id, "a.pdf", "p2.pdf")


def test_create_record_empty_notes_stored_as_null(engine, clinic):
    doctor, alice, _ = clinic
    record = _record(engine, alice, doctor, "scan.png", file_type="image/png", notes="")
    stored = get_record(engine, record.id)
    assert stored.notes is None
    assert stored.file_type == "image/png"
    assert stored.doctor_name == "Gregory House"


def test_create_record_store_unavailable():
    with pytest.raises(StoreUnavailable):
        create_record(FailingEngine(), "p", "d", "a.pdf", "x.pdf")


# ── Tests: list_records_for_patient ──────────────────────────────────

def test_records_isolated_per_patient(engine, clinic):
    doctor, alice, bob = clinic
    for i in range(3):
        _record(engine, bob, doctor, f"bob-{i}.pdf")
    _record(engine, alice, doctor, "alice.pdf")

    records = list_records_for_patient(engine, alice, alice.principal_id)
    assert [r.file_name for r in records] == ["alice.pdf"]
    assert all(r.patient_id == alice.principal_id for r in records)


def test_records_newest_first(engine, clinic):
    doctor, alice, _ = clinic
    base = datetime(2024, 1, 1, 12, 0, 0)
    for offset, name in [(1, "mid.pdf"), (0, "old.pdf"), (2, "new.pdf")]:
        rec = _record(engine, alice, doctor, name)
        with engine.begin() as conn:
            conn.execute(
                update(medical_records)
                .where(medical_records.c.id == rec.id)
                .values(uploaded_at=base + timedelta(days=offset))
            )

    records = list_records_for_patient(engine, alice, alice.principal_id)
    assert [r.file_name for r in records] == ["new.pdf", "mid.pdf", "old.pdf"]
    for earlier, later in zip(records, records[1:]):
        assert earlier.uploaded_at >= later.uploaded_at


def test_records_empty_is_valid(engine, clinic):
    _, alice, _ = clinic
    assert list_records_for_patient(engine, alice, alice.principal_id) == []


def test_patient_cannot_list_other_patient(engine, clinic):
    _, alice, bob = clinic
    with pytest.raises(AccessDenied):
        list_records_for_patient(engine, alice, bob.principal_id)


def test_doctor_cannot_list_patient_records(engine, clinic):
    doctor, alice, _ = clinic
    with pytest.raises(AccessDenied):
        list_records_for_patient(engine, doctor, alice.principal_id)
