"""
Profile provisioning and lookup.

A Profile is created by the sign-up hook and may briefly be absent right
after sign-up; ``wait_for_profile`` polls for it instead of failing.
"""

import logging
import time
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from medrecords.config import PROFILE_WAIT_ATTEMPTS, PROFILE_WAIT_DELAY, ROLES
from medrecords.database import profiles
from medrecords.errors import ProfileMissing, StoreUnavailable, ValidationError
from medrecords.models import Profile

logger = logging.getLogger(__name__)


def row_to_profile(row) -> Profile:
    return Profile(
        id=str(row["id"]),
        full_name=str(row["full_name"]),
        email=str(row["email"]),
        role=str(row["role"]).strip().lower(),
    )


def provision_profile(engine: Engine, principal_id: str, full_name: str,
                      email: str, role: str) -> Profile:
    """Insert the Profile row for a freshly signed-up principal."""
    if role not in ROLES:
        raise ValidationError(f"Unsupported role '{role}'.")
    values = {"id": principal_id, "full_name": full_name, "email": email, "role": role}
    try:
        with engine.begin() as conn:
            conn.execute(insert(profiles).values(**values))
    except IntegrityError as e:
        raise ValidationError(f"Profile for {principal_id} could not be created: {e.orig}")
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Could not create profile: {e}")
    logger.info("Provisioned %s profile %s", role, principal_id)
    return Profile(**values)


def resolve_profile(engine: Engine, principal_id: str) -> Optional[Profile]:
    """Return the Profile for *principal_id*, or None if not provisioned yet."""
    stmt = select(profiles).where(profiles.c.id == principal_id)
    try:
        with engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
    except SQLAlchemyError as e:
        raise StoreUnavailable(f"Could not load profile: {e}")
    return row_to_profile(row) if row else None


def wait_for_profile(engine: Engine, principal_id: str,
                     attempts: int = PROFILE_WAIT_ATTEMPTS,
                     delay: float = PROFILE_WAIT_DELAY,
                     sleep=None) -> Profile:
    """Poll ``resolve_profile`` until the row appears, then give up with ProfileMissing."""
    sleep = sleep or time.sleep
    for attempt in range(1, max(attempts, 1) + 1):
        profile = resolve_profile(engine, principal_id)
        if profile is not None:
            return profile
        if attempt < attempts:
            logger.debug("Profile %s not ready (attempt %d/%d)", principal_id, attempt, attempts)
            sleep(delay)
    raise ProfileMissing("Your profile is still being set up. Please try again in a moment.")
