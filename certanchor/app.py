import logging

from flask import Flask, jsonify, request
from flask_cors import CORS

from .config import Settings
from .crypto_utils import get_cipher
from .errors import CertAnchorError, ErrorKind, Unauthorized
from .identity import LocalIdentityProvider
from .logging_config import configure_logging
from .models import NOT_FOUND
from .service import CertificateAuthority

logger = logging.getLogger(__name__)

STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.ANCHORING_FAILED: 502,
    ErrorKind.REVOCATION_FAILED: 502,
    ErrorKind.MINT_FAILED: 502,
    ErrorKind.INCONSISTENT_STATE: 500,
}

# request field -> certificate draft field
DRAFT_FIELDS = {
    "id": "identifier",
    "studentName": "student_name",
    "courseName": "course_name",
    "institution": "institution",
    "instituteId": "institute_id",
    "year": "year",
    "semester": "semester",
    "CGPA": "score",
    "score": "score",
    "publicKey": "public_key",
}


def error_response(kind, message, details=None):
    body = {"error": message, "kind": kind.value}
    if details:
        body["details"] = details
    return jsonify(body), STATUS[kind]


def create_app(settings=None, authority=None, identity=None):
    settings = settings or Settings.from_env()

    # ---------------- FLASK SETUP ----------------
    app = Flask(__name__)
    CORS(app)

    if authority is None:
        authority = CertificateAuthority.from_settings(settings, app=app)
    if identity is None:
        identity = LocalIdentityProvider(authority.store, get_cipher(settings.master_key), settings.session_ttl)
    app.extensions["certanchor"] = {"authority": authority, "identity": identity}

    # ---------------- SAGA RECOVERY ----------------
    recovered = authority.recover()
    if not recovered.ok:
        logger.error("saga recovery failed: %s", recovered.message)

    def json_body():
        return request.get_json(silent=True) or {}

    def principal():
        scheme, _, token = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer":
            raise Unauthorized("No token provided")
        return identity.authorize(token.strip())

    def respond(result, status=200, render=None):
        if not result.ok:
            return error_response(result.error, result.message, result.details)
        return jsonify(render(result.value) if render else result.value), status

    @app.errorhandler(CertAnchorError)
    def handle_error(exc):
        return error_response(exc.kind, exc.message, exc.details)

    # ---------------- ROUTES ----------------
    @app.get("/health")
    def health():
        return jsonify({"status": "OK", "message": "Certificate anchoring service is running"})

    # ---------------- AUTH ----------------
    @app.post("/auth/register")
    def register():
        data = json_body()
        institute = identity.register(data.get("instituteId"), data.get("instituteName"), data.get("password"))
        return jsonify({
            "instituteId": institute.institute_id,
            "instituteName": institute.institute_name,
            "createdAt": institute.created_at,
        }), 201

    @app.post("/auth/login")
    def login():
        data = json_body()
        token = identity.authenticate(data.get("instituteId"), data.get("password"))
        who = identity.authorize(token)
        return jsonify({
            "token": token,
            "institute": {"instituteId": who.institute_id, "instituteName": who.institute_name},
        })

    # ---------------- ISSUE ----------------
    @app.post("/certificates")
    def issue():
        caller = principal()
        data = json_body()
        draft = {field: data[name] for name, field in DRAFT_FIELDS.items() if name in data}
        return respond(
            authority.issue(draft, caller),
            status=201,
            render=lambda receipt: {
                "message": "Certificate issued and anchored",
                "certificateHash": receipt.hash,
                "certificate": {"id": receipt.identifier, "createdAt": receipt.created_at},
            },
        )

    # ---------------- REVOKE ----------------
    @app.post("/certificates/<identifier>/revoke")
    def revoke(identifier):
        caller = principal()
        return respond(
            authority.revoke(identifier, caller),
            render=lambda receipt: {
                "message": "Certificate already revoked" if receipt.already_revoked else "Certificate revoked",
                "certificateHash": receipt.hash,
                "revokedAt": receipt.revoked_at,
            },
        )

    # ---------------- VERIFY ----------------
    @app.post("/verify")
    def verify():
        data = json_body()
        result = authority.verify(data.get("certificateId"), data.get("publicKey"))
        if not result.ok:
            return error_response(result.error, result.message, result.details)
        verdict = result.value
        body = verdict.to_dict()
        body["isValid"] = verdict.is_valid
        return jsonify(body), 404 if verdict.verdict == NOT_FOUND else 200

    @app.get("/hash/<identifier>/<public_key>")
    def certificate_hash(identifier, public_key):
        return respond(
            authority.certificate_hash(identifier, public_key),
            render=lambda digest: {"certificateHash": digest},
        )

    # ---------------- UNIQUE IDS ----------------
    @app.post("/unique-id/generate")
    def generate_unique_id():
        caller = principal()
        return respond(
            authority.mint(caller),
            status=201,
            render=lambda record: {"uniqueId": record.unique_id, "generatedAt": record.generated_at},
        )

    @app.get("/unique-id/list")
    def list_unique_ids():
        caller = principal()
        return respond(
            authority.list_mine(caller),
            render=lambda records: {"uniqueIds": [
                {"uniqueId": r.unique_id, "generatedAt": r.generated_at, "isActive": r.is_active}
                for r in records
            ]},
        )

    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    app = create_app(settings)
    app.run(host="0.0.0.0", port=settings.port, debug=False)


if __name__ == "__main__":
    main()
