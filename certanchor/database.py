from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class Certificate(db.Model):
    __tablename__ = "certificates"

    record_key = db.Column(db.String(300), primary_key=True)

    identifier = db.Column(db.String(150), nullable=False, index=True)
    student_name = db.Column(db.String(150), nullable=False)
    course_name = db.Column(db.String(150), nullable=False)
    institution = db.Column(db.String(200), nullable=False)
    institute_id = db.Column(db.String(100), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    semester = db.Column(db.Integer, nullable=False)
    score = db.Column(db.String(20), nullable=False)
    public_key = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.String(40), nullable=False)
    status = db.Column(db.String(20), default="Active", nullable=False)
    revoked_at = db.Column(db.String(40))
    saga_id = db.Column(db.String(40))


class Institute(db.Model):
    __tablename__ = "institutes"

    record_key = db.Column(db.String(100), primary_key=True)
    institute_id = db.Column(db.String(100), unique=True, nullable=False)
    institute_name = db.Column(db.String(200), nullable=False)
    credential_hash = db.Column(db.String(256), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.String(40))


class UniqueId(db.Model):
    __tablename__ = "unique_ids"

    record_key = db.Column(db.String(100), primary_key=True)
    unique_id = db.Column(db.String(100), unique=True, nullable=False)
    institute_id = db.Column(db.String(100), nullable=False, index=True)
    generated_at = db.Column(db.String(40), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


class SagaStep(db.Model):
    __tablename__ = "sagas"

    record_key = db.Column(db.String(40), primary_key=True)
    saga_id = db.Column(db.String(40), nullable=False)
    kind = db.Column(db.String(20), nullable=False)
    step = db.Column(db.String(40), nullable=False)
    state = db.Column(db.String(20), nullable=False, index=True)
    identifier = db.Column(db.String(150))
    institute_id = db.Column(db.String(100))
    hash = db.Column(db.String(64))
    tx_id = db.Column(db.String(100))
    error = db.Column(db.Text)
    started_at = db.Column(db.String(40))
    updated_at = db.Column(db.String(40))
    target_key = db.Column(db.String(300), index=True)


MODELS = {
    "certificates": Certificate,
    "institutes": Institute,
    "unique_ids": UniqueId,
    "sagas": SagaStep,
}


def init_database(app, uri):
    app.config["SQLALCHEMY_DATABASE_URI"] = uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    db.init_app(app)
    with app.app_context():
        db.create_all()
