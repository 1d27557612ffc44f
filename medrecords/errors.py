"""
Error taxonomy shared by the core modules and the HTTP layer.

Every error carries a human-readable message that is shown to the user
as-is; ``status_code`` is the HTTP status the API answers with.
"""


class MedRecordsError(Exception):
    status_code = 500


# ── Identity ─────────────────────────────────────────────────────────

class AuthError(MedRecordsError):
    status_code = 401


class InvalidCredentials(AuthError):
    status_code = 401


class DuplicateAccount(AuthError):
    status_code = 409


class WeakCredential(AuthError):
    status_code = 400


# ── Profiles / access ────────────────────────────────────────────────

class ProfileMissing(MedRecordsError):
    """Profile row not provisioned yet; transient, the client should retry."""
    status_code = 503


class ValidationError(MedRecordsError):
    status_code = 400


class AccessDenied(MedRecordsError):
    status_code = 403


# ── Relational store ─────────────────────────────────────────────────

class StoreError(MedRecordsError):
    status_code = 500


class StoreUnavailable(StoreError):
    status_code = 503


# ── Object storage ───────────────────────────────────────────────────

class UploadError(MedRecordsError):
    status_code = 502


class UploadRejected(UploadError):
    """File refused before it reached storage (type or size)."""
    status_code = 400


class DownloadError(MedRecordsError):
    status_code = 502


class NotFound(DownloadError):
    status_code = 404
