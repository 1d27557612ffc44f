"""
Identity provider: sign-up, sign-in, sign-out and session lookup.

Credentials live in the ``users`` table (bcrypt hashes). A successful
sign-up or sign-in returns a Session whose JWT token is the only thing the
rest of the application ever sees again.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import bcrypt
import jwt
from sqlalchemy import delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from medrecords.config import (
    MAX_PASSWORD_BYTES,
    MIN_PASSWORD_LENGTH,
    ROLES,
    SECRET_KEY,
    TOKEN_EXPIRY_HOURS,
)
from medrecords.database import profiles, users
from medrecords.errors import (
    DuplicateAccount,
    InvalidCredentials,
    StoreUnavailable,
    ValidationError,
    WeakCredential,
)
from medrecords.models import Principal, Session
from medrecords.profiles import provision_profile

logger = logging.getLogger(__name__)

SignUpHook = Callable[[Engine, str, str, str, str], Any]


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class IdentityProvider:
    """Issues and tracks sessions for principals stored in ``users``."""

    def __init__(self, engine: Engine, secret_key: str = SECRET_KEY,
                 token_expiry_hours: int = TOKEN_EXPIRY_HOURS,
                 on_sign_up: Optional[SignUpHook] = provision_profile):
        self.engine = engine
        self.secret_key = secret_key
        self.token_expiry_hours = token_expiry_hours
        self.on_sign_up = on_sign_up
        # token -> Session
        self.sessions: Dict[str, Session] = {}

    # ── Tokens ───────────────────────────────────────────────────────

    def generate_token(self, principal: Principal) -> str:
        """Generate a JWT token for an authenticated principal."""
        now = datetime.utcnow()
        payload = {
            "sub": principal.id,
            "email": principal.email,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + timedelta(hours=self.token_expiry_hours),
        }
        return jwt.encode(payload, self.secret_key, algorithm="HS256")

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify a JWT token and return the decoded payload (or None)."""
        try:
            return jwt.decode(token, self.secret_key, algorithms=["HS256"])
        except jwt.ExpiredSignatureError:
            self.sessions.pop(token, None)
            return None
        except jwt.InvalidTokenError:
            return None

    def _open_session(self, principal: Principal) -> Session:
        token = self.generate_token(principal)
        now = datetime.utcnow()
        session = Session(token=token, principal=principal, created_at=now, last_activity=now)
        self.sessions[token] = session
        return session

    def _discard_principal(self, principal: Principal) -> None:
        """Undo a sign-up whose profile could not be provisioned."""
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(profiles).where(profiles.c.id == principal.id))
                conn.execute(delete(users).where(users.c.id == principal.id))
            logger.info("Rolled back sign-up of %s", principal.id)
        except SQLAlchemyError:
            logger.error("Could not roll back sign-up of %s", principal.id, exc_info=True)

    # ── Public operations ────────────────────────────────────────────

    def sign_up(self, email: str, password: str, full_name: str, role: str) -> Session:
        """Register a principal, provision its profile and open a session."""
        email = normalize_email(email)
        full_name = (full_name or "").strip()
        if not email or not full_name:
            raise ValidationError("Email and full name are required.")
        if role not in ROLES:
            raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise WeakCredential(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if len(password.encode()) > MAX_PASSWORD_BYTES:
            raise WeakCredential(
                f"Password should be at most {MAX_PASSWORD_BYTES} bytes long."
            )

        principal = Principal(id=str(uuid.uuid4()), email=email)
        password_hash = bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()

        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(users.c.id).where(users.c.email == email)
                ).first()
                if existing:
                    raise DuplicateAccount("User already registered")
                conn.execute(insert(users).values(
                    id=principal.id,
                    email=email,
                    password_hash=password_hash,
                    created_at=datetime.utcnow(),
                ))
        except IntegrityError:
            raise DuplicateAccount("User already registered")
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Sign-up failed: {e}")

        if self.on_sign_up is not None:
            try:
                self.on_sign_up(self.engine, principal.id, full_name, email, role)
            except Exception:
                self._discard_principal(principal)
                raise

        logger.info("Signed up %s as %s", principal.id, role)
        return self._open_session(principal)

    def sign_in(self, email: str, password: str) -> Session:
        """Check credentials and open a session."""
        email = normalize_email(email)
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(users.c.id, users.c.email, users.c.password_hash)
                    .where(users.c.email == email)
                ).mappings().first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Sign-in failed: {e}")

        secret = (password or "").encode()
        if (not row or len(secret) > MAX_PASSWORD_BYTES
                or not bcrypt.checkpw(secret, row["password_hash"].encode())):
            raise InvalidCredentials("Invalid login credentials")

        principal = Principal(id=str(row["id"]), email=str(row["email"]))
        logger.info("Signed in %s", principal.id)
        return self._open_session(principal)

    def sign_out(self, token: Optional[str]) -> None:
        """Invalidate a session; unknown or missing tokens are ignored."""
        if token and self.sessions.pop(token, None) is not None:
            logger.info("Signed out session")

    def current_session(self, token: Optional[str]) -> Optional[Principal]:
        """Return the principal behind *token*, or None."""
        if not token:
            return None
        payload = self.verify_token(token)
        if not payload:
            return None
        session = self.sessions.get(token)
        if session is None:
            return None
        session.last_activity = datetime.utcnow()
        return session.principal

    def cleanup_expired_sessions(self) -> int:
        """Remove sessions that have been inactive beyond the token lifetime."""
        now = datetime.utcnow()
        limit = self.token_expiry_hours * 3600
        expired = [
            tok for tok, s in self.sessions.items()
            if (now - s.last_activity).total_seconds() > limit
        ]
        for tok in expired:
            del self.sessions[tok]
        if expired:
            logger.info("Removed %d expired sessions", len(expired))
        return len(expired)
