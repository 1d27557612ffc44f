"""
Role-Based Access Control – resolving the caller's view and building policies.

The view/redirect logic only decides where a principal should land. The
Policy is what every API read and write is checked against.
"""

from typing import Optional

from sqlalchemy.engine import Engine

from medrecords.config import ROLE_DOCTOR, ROLE_PATIENT
from medrecords.errors import AccessDenied
from medrecords.identity import IdentityProvider
from medrecords.models import AccessContext, Policy, View
from medrecords.profiles import wait_for_profile

# ── Operations ───────────────────────────────────────────────────────
LIST_PATIENTS = "list_patients"
CREATE_RECORD = "create_record"
LIST_OWN_RECORDS = "list_own_records"
DOWNLOAD_OWN_RECORD = "download_own_record"


def view_for_role(role: Optional[str]) -> View:
    if role == ROLE_DOCTOR:
        return View.DOCTOR
    if role == ROLE_PATIENT:
        return View.PATIENT
    raise ValueError(f"Unknown role: {role}")


def load_access_context(identity: IdentityProvider, engine: Engine,
                        token: Optional[str]) -> AccessContext:
    """Look up the session behind *token* and return the caller's AccessContext."""
    principal = identity.current_session(token)
    if principal is None:
        return AccessContext.anonymous()

    profile = wait_for_profile(engine, principal.id)
    return AccessContext(
        view=view_for_role(profile.role),
        token=token,
        principal_id=principal.id,
        email=profile.email,
        full_name=profile.full_name,
        role=profile.role,
    )


def guard(ctx: AccessContext, requested: View) -> Optional[View]:
    """Return None if *ctx* may see *requested*, else the view to redirect to."""
    if requested == ctx.view:
        return None
    if requested == View.UNAUTHENTICATED:
        # signed-in users visiting the auth page go to their dashboard
        return ctx.view
    if not ctx.is_authenticated:
        return View.UNAUTHENTICATED
    return ctx.view


def build_policy(ctx: AccessContext) -> Policy:
    """Derive an RBAC Policy from an AccessContext."""

    if not ctx.is_authenticated:
        return Policy(role=None, notes="Anonymous callers may only sign up or sign in.")

    if ctx.role == ROLE_DOCTOR:
        return Policy(
            role=ROLE_DOCTOR,
            allowed_operations={LIST_PATIENTS, CREATE_RECORD},
            notes="Doctor can browse the patient roster and upload records for any patient.",
        )

    if ctx.role == ROLE_PATIENT:
        return Policy(
            role=ROLE_PATIENT,
            allowed_operations={LIST_OWN_RECORDS, DOWNLOAD_OWN_RECORD},
            record_scope_patient_id=ctx.principal_id,
            notes="Patient can only list and download records where patient_id is their own id.",
        )

    raise ValueError(f"Unknown role: {ctx.role}")


def require(policy: Policy, operation: str, patient_id: Optional[str] = None) -> None:
    """Raise AccessDenied unless *policy* allows *operation* (on *patient_id*)."""
    if operation not in policy.allowed_operations:
        raise AccessDenied(f"Your role is not allowed to {operation.replace('_', ' ')}.")
    if policy.record_scope_patient_id is not None and patient_id is not None:
        if patient_id != policy.record_scope_patient_id:
            raise AccessDenied("You can only access your own medical records.")
