"""
Flask route handlers for the REST API.
"""

import io
from datetime import datetime, timedelta

from flask import current_app, jsonify, request, send_file
from werkzeug.exceptions import HTTPException

from medrecords.api.auth import current_context, extract_token, token_required, view_required
from medrecords.api.schemas import (
    LoginSchema,
    PatientSchema,
    ProfileSchema,
    RecordSchema,
    SignUpSchema,
    UploadFormSchema,
)
from medrecords.database import check_connection
from medrecords.errors import MedRecordsError
from medrecords.models import Profile, UploadedFile, View
from medrecords.profiles import wait_for_profile
from medrecords.rbac import build_policy, view_for_role
from medrecords.records import list_patients, list_records_for_patient, search_patients
from medrecords.transfer import download_record, upload_record

signup_schema = SignUpSchema()
login_schema = LoginSchema()
upload_form_schema = UploadFormSchema()
profile_schema = ProfileSchema()
patients_schema = PatientSchema(many=True)
record_schema = RecordSchema()
records_schema = RecordSchema(many=True)


def register_routes(app, engine, identity, storage):
    """Register all API routes on the Flask *app*."""

    def auth_response(session, profile: Profile, status: int):
        view = view_for_role(profile.role)
        expires_at = datetime.utcnow() + timedelta(hours=identity.token_expiry_hours)
        return jsonify({
            "success": True,
            "token": session.token,
            "user": profile_schema.dump(profile),
            "view": view.value,
            "redirect_to": view.path,
            "expires_at": expires_at.isoformat(),
        }), status

    # ── Landing / health ─────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "MedRecords API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "signup": "/api/auth/signup",
                "login": "/api/auth/login",
                "logout": "/api/auth/logout",
                "patient_dashboard": "/patient",
                "doctor_dashboard": "/doctor",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {
            "database": check_connection(engine),
            "storage": storage.ping(),
        }
        all_healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(identity.sessions),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/signup", methods=["POST"])
    def signup():
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        errs = signup_schema.validate(data)
        if errs:
            return jsonify({"error": "Invalid sign-up data", "details": errs}), 400

        session = identity.sign_up(data["email"], data["password"], data["full_name"], data["role"])
        profile = Profile(
            id=session.principal.id,
            full_name=data["full_name"].strip(),
            email=session.principal.email,
            role=data["role"],
        )
        return auth_response(session, profile, 201)

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        data = request.get_json(silent=True)
        if data is None:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        errs = login_schema.validate(data)
        if errs:
            return jsonify({"error": "Invalid login data", "details": errs}), 400

        session = identity.sign_in(data["email"], data["password"])
        profile = wait_for_profile(engine, session.principal.id)
        return auth_response(session, profile, 200)

    @app.route("/api/auth/logout", methods=["POST"])
    def logout():
        identity.sign_out(extract_token())
        return jsonify({
            "success": True,
            "message": "Logged out successfully",
            "view": View.UNAUTHENTICATED.value,
            "redirect_to": "/",
        }), 200

    @app.route("/api/auth/session", methods=["GET"])
    def get_session():
        ctx = current_context()
        if not ctx.is_authenticated:
            return jsonify({"authenticated": False, "user": None, "view": ctx.view.value}), 200
        return jsonify({
            "authenticated": True,
            "user": {
                "id": ctx.principal_id,
                "full_name": ctx.full_name,
                "email": ctx.email,
                "role": ctx.role,
            },
            "view": ctx.view.value,
            "policy": {"notes": build_policy(ctx).notes},
        }), 200

    # ── Views ────────────────────────────────────────────────────────

    @app.route("/auth", methods=["GET"])
    @view_required(View.UNAUTHENTICATED)
    def auth_view():
        return jsonify({
            "view": View.UNAUTHENTICATED.value,
            "actions": {"signin": "/api/auth/login", "signup": "/api/auth/signup"},
        }), 200

    @app.route("/patient", methods=["GET"])
    @view_required(View.PATIENT)
    def patient_dashboard():
        ctx = request.access_ctx
        records = list_records_for_patient(engine, ctx, ctx.principal_id)
        return jsonify({
            "view": View.PATIENT.value,
            "profile": {"full_name": ctx.full_name, "email": ctx.email},
            "records": records_schema.dump(records),
        }), 200

    @app.route("/doctor", methods=["GET"])
    @view_required(View.DOCTOR)
    def doctor_dashboard():
        ctx = request.access_ctx
        patients = list_patients(engine, ctx)
        return jsonify({
            "view": View.DOCTOR.value,
            "profile": {"full_name": ctx.full_name, "email": ctx.email},
            "patients": patients_schema.dump(patients),
        }), 200

    # ── Patients / records ───────────────────────────────────────────

    @app.route("/api/patients", methods=["GET"])
    @token_required
    def get_patients():
        patients = list_patients(engine, request.access_ctx)
        matches = search_patients(request.args.get("q", ""), patients)
        return jsonify({"success": True, "patients": patients_schema.dump(matches)}), 200

    @app.route("/api/records", methods=["GET"])
    @token_required
    def get_records():
        ctx = request.access_ctx
        patient_id = request.args.get("patient_id", ctx.principal_id)
        records = list_records_for_patient(engine, ctx, patient_id)
        return jsonify({"success": True, "records": records_schema.dump(records)}), 200

    @app.route("/api/records", methods=["POST"])
    @token_required
    def post_record():
        ctx = request.access_ctx
        form = upload_form_schema.load(request.form)

        upload = request.files.get("file")
        chosen = None
        if upload is not None and upload.filename:
            chosen = UploadedFile(
                file_name=upload.filename,
                data=upload.read(),
                content_type=upload.mimetype or None,
            )

        record = upload_record(engine, storage, ctx, form["patient_id"], chosen, form["notes"])
        return jsonify({
            "success": True,
            "message": "Medical record uploaded successfully",
            "record": record_schema.dump(record),
        }), 201

    @app.route("/api/records/<record_id>/download", methods=["GET"])
    @token_required
    def download(record_id):
        record, data = download_record(engine, storage, request.access_ctx, record_id)
        return send_file(
            io.BytesIO(data),
            mimetype=record.file_type or "application/octet-stream",
            as_attachment=True,
            download_name=record.file_name,
        )

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(MedRecordsError)
    def medrecords_error(e):
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"error": "File is too large", "message": str(e)}), 413

    @app.errorhandler(Exception)
    def unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
