"""
Record store adapter – patient roster and medical record metadata.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from medrecords.config import ROLE_DOCTOR, ROLE_PATIENT
from medrecords.database import medical_records, profiles
from medrecords.errors import StoreUnavailable, ValidationError
from medrecords.models import AccessContext, Profile, Record
from medrecords.profiles import row_to_profile
from medrecords.rbac import LIST_OWN_RECORDS, LIST_PATIENTS, build_policy, require

logger = logging.getLogger(__name__)


def _row_to_record(row) -> Record:
    return Record(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        doctor_id=str(row["doctor_id"]),
        file_name=row["file_name"],
        file_url=row["file_url"],
        file_type=row["file_type"],
        notes=row["notes"],
        uploaded_at=row["uploaded_at"],
        doctor_name=row.get("doctor_name"),
    )


# ── Patients ─────────────────────────────────────────────────────────

def list_patients(engine: Engine, ctx: AccessContext) -> List[Profile]:
    """All patient profiles ordered by full name (doctor only, no paging)."""
    require(build_policy(ctx), LIST_PATIENTS)
    stmt = (
        select(profiles)
        .where(profiles.c.role == ROLE_PATIENT)
        .order_by(profiles.c.full_name.asc())
    )
    try:
        with engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Failed to load patients: {e}")
    return [row_to_profile(r) for r in rows]


def search_patients(query: str, patients: List[Profile]) -> List[Profile]:
    """Case-insensitive substring filter on name or email; keeps input order."""
    needle = (query or "").lower()
    return [
        p for p in patients
        if needle in p.full_name.lower() or needle in p.email.lower()
    ]


# ── Records ──────────────────────────────────────────────────────────

def _records_with_doctor():
    doctor = profiles.alias("doctor")
    return (
        select(medical_records, doctor.c.full_name.label("doctor_name"))
        .select_from(
            medical_records.join(doctor, medical_records.c.doctor_id == doctor.c.id)
        )
    )


def list_records_for_patient(engine: Engine, ctx: AccessContext, patient_id: str) -> List[Record]:
    """The patient's own records, newest first, with the uploading doctor's name."""
    require(build_policy(ctx), LIST_OWN_RECORDS, patient_id=patient_id)
    stmt = (
        _records_with_doctor()
        .where(medical_records.c.patient_id == patient_id)
        .order_by(medical_records.c.uploaded_at.desc(), medical_records.c.id.desc())
    )
    try:
        with engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Failed to load medical records: {e}")
    return [_row_to_record(r) for r in rows]


def get_record(engine: Engine, record_id: str) -> Optional[Record]:
    stmt = _records_with_doctor().where(medical_records.c.id == record_id)
    try:
        with engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Failed to load medical record: {e}")
    return _row_to_record(row) if row else None


def create_record(engine: Engine, patient_id: str, doctor_id: str, file_name: str,
                  file_url: str, file_type: Optional[str] = None,
                  notes: Optional[str] = None) -> Record:
    """Insert one immutable Record.

    Both ids must resolve to profiles of the matching role. Backend failures
    surface as StoreUnavailable and are not retried.
    """
    if not patient_id or not doctor_id:
        raise ValidationError("Please select a patient and file")
    if not file_name or not file_url:
        raise ValidationError("A stored file is required to create a record.")

    values = {
        "id": str(uuid.uuid4()),
        "patient_id": patient_id,
        "doctor_id": doctor_id,
        "file_name": file_name,
        "file_url": file_url,
        "file_type": file_type or None,
        "notes": notes or None,
        "uploaded_at": datetime.utcnow(),
    }

    try:
        with engine.begin() as conn:
            roles = dict(conn.execute(
                select(profiles.c.id, profiles.c.role)
                .where(profiles.c.id.in_([patient_id, doctor_id]))
            ).all())
            if roles.get(patient_id) != ROLE_PATIENT:
                raise ValidationError(f"Patient {patient_id} does not exist.")
            if roles.get(doctor_id) != ROLE_DOCTOR:
                raise ValidationError(f"Doctor {doctor_id} does not exist.")
            conn.execute(insert(medical_records).values(**values))
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Failed to save medical record: {e}")

    logger.info("Created record %s for patient %s by doctor %s",
                values["id"], patient_id, doctor_id)
    return Record(**values)
