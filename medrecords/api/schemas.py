"""
marshmallow schemas for request bodies and JSON responses of the HTTP API.
"""

from marshmallow import EXCLUDE, Schema, fields, validate

from medrecords.config import ROLES


class SignUpSchema(Schema):
    email     = fields.Email(required=True)
    password  = fields.Str(required=True)
    full_name = fields.Str(required=True, validate=validate.Length(min=1))
    role      = fields.Str(required=True, validate=validate.OneOf(ROLES))


class LoginSchema(Schema):
    email    = fields.Email(required=True)
    password = fields.Str(required=True)


class UploadFormSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    patient_id = fields.Str(load_default=None)
    notes      = fields.Str(load_default=None, allow_none=True)


class ProfileSchema(Schema):
    id        = fields.Str()
    full_name = fields.Str()
    email     = fields.Str()
    role      = fields.Str()


class PatientSchema(Schema):
    id        = fields.Str()
    full_name = fields.Str()
    email     = fields.Str()


class RecordSchema(Schema):
    id           = fields.Str(dump_only=True)
    patient_id   = fields.Str()
    doctor_id    = fields.Str()
    file_name    = fields.Str()
    file_url     = fields.Str()
    file_type    = fields.Str(allow_none=True)
    notes        = fields.Str(allow_none=True)
    uploaded_at  = fields.DateTime(dump_only=True)
    doctor       = fields.Function(lambda r: {"full_name": r.doctor_name})
    download_url = fields.Function(lambda r: f"/api/records/{r.id}/download")
