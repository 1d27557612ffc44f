"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Set


class View(str, Enum):
    """The three places the access gate can send a principal."""
    UNAUTHENTICATED = "unauthenticated"
    PATIENT = "patient"
    DOCTOR = "doctor"

    @property
    def path(self) -> str:
        return {
            View.UNAUTHENTICATED: "/auth",
            View.PATIENT: "/patient",
            View.DOCTOR: "/doctor",
        }[self]


@dataclass(frozen=True)
class Principal:
    """An authenticated identity issued at sign-in."""
    id: str
    email: str


@dataclass
class Session:
    """A live session in the identity provider's registry."""
    token: str
    principal: Principal
    created_at: datetime
    last_activity: datetime


@dataclass
class Profile:
    id: str
    full_name: str
    email: str
    role: str                  # "patient" or "doctor"


@dataclass
class Record:
    """Immutable reference to one uploaded medical document."""
    id: str
    patient_id: str
    doctor_id: str
    file_name: str
    file_url: str              # opaque storage path, never the original name
    file_type: Optional[str]
    notes: Optional[str]
    uploaded_at: datetime
    doctor_name: Optional[str] = None


@dataclass
class UploadedFile:
    """A file chosen by the user, read fully into memory."""
    file_name: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class AccessContext:
    """The caller's identity, profile and resolved view.

    Anonymous callers get an explicit context with ``view`` set to
    ``View.UNAUTHENTICATED`` and no principal.
    """
    view: View
    token: Optional[str] = None
    principal_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def anonymous(cls) -> "AccessContext":
        return cls(view=View.UNAUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        return self.principal_id is not None


@dataclass
class Policy:
    """Server-side authorization derived from an AccessContext."""
    role: Optional[str]
    allowed_operations: Set[str] = field(default_factory=set)
    record_scope_patient_id: Optional[str] = None  # patients only see their own
    notes: str = ""
