from flask_sqlalchemy import SQLAlchemy
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, UTC
from flask_login import UserMixin
import json

db = SQLAlchemy()

COURSE_LEVELS = ('Beginner', 'Intermediate', 'Advanced')

# Enrollment statuses
REGISTERED = 'registered'
PENDING = 'pending'
COMPLETED = 'completed'


def _utcnow():
    return datetime.now(UTC)


class User(UserMixin, db.Model):
    __tablename__ = 'user'

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default='student')  # 'student' or 'admin'
    created_at = db.Column(db.DateTime, default=_utcnow)

    enrollments = db.relationship('Enrollment', backref='user', lazy=True, cascade='all, delete-orphan')
    notifications = db.relationship('Notification', backref='user', lazy=True, cascade='all, delete-orphan')

    def get_id(self):
        return str(self.user_id)

    @property
    def is_admin(self):
        return self.role == 'admin'

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if self.password_hash:
            return check_password_hash(self.password_hash, password)
        return False

    def enrollment_for(self, course_id):
        return Enrollment.query.filter_by(user_id=self.user_id, course_id=course_id).first()

    def course_ids_with_status(self, status):
        return [e.course_id for e in self.enrollments if e.status == status]

    def to_dict(self):
        return {
            'id': self.user_id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'registered_course_ids': [e.course_id for e in self.enrollments],
            'pending_course_ids': self.course_ids_with_status(PENDING),
            'completed_course_ids': self.course_ids_with_status(COMPLETED),
            'course_progress': {str(e.course_id): e.progress for e in self.enrollments},
        }


class Course(db.Model):
    __tablename__ = 'course'

    course_id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default='')
    instructor = db.Column(db.String(255), nullable=False)
    duration = db.Column(db.String(100), nullable=False)
    level = db.Column(db.String(20), nullable=False, default='Beginner')
    price = db.Column(db.Float, nullable=False, default=0.0)  # GHC
    tags_json = db.Column(db.Text, default='[]')
    image = db.Column(db.String(500), nullable=False)
    # Cropped, background-removed PNG produced by the signature cropper
    signature_image = db.Column(db.LargeBinary)
    signature_updated_at = db.Column(db.DateTime)

    enrollments = db.relationship('Enrollment', backref='course', lazy=True, cascade='all, delete-orphan')

    @property
    def tags(self):
        try:
            tags = json.loads(self.tags_json or '[]')
        except (json.JSONDecodeError, TypeError):
            return []
        return tags if isinstance(tags, list) else []

    @tags.setter
    def tags(self, value):
        self.tags_json = json.dumps(list(value or []))

    @property
    def has_signature(self):
        return self.signature_image is not None

    def set_signature(self, png_bytes):
        """Replace the signature wholesale, or clear it with None."""
        self.signature_image = png_bytes
        self.signature_updated_at = _utcnow() if png_bytes is not None else None

    def to_dict(self):
        return {
            'id': self.course_id,
            'title': self.title,
            'description': self.description,
            'instructor': self.instructor,
            'duration': self.duration,
            'level': self.level,
            'price': self.price,
            'tags': self.tags,
            'image': self.image,
            'has_signature': self.has_signature,
            'signature_updated_at': self.signature_updated_at.isoformat() if self.signature_updated_at else None,
        }


def update_course_signature(course_id, signature):
    """Attach a signature PNG to a course, or clear it with None. Returns the course or None.

    Only flushes; the caller commits together with its own changes.
    """
    course = db.session.get(Course, course_id)
    if not course:
        return None
    course.set_signature(signature)
    db.session.flush()
    return course


class Enrollment(db.Model):
    __tablename__ = 'enrollment'
    __table_args__ = (db.UniqueConstraint('user_id', 'course_id', name='uq_enrollment_user_course'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    course_id = db.Column(db.Integer, db.ForeignKey('course.course_id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=REGISTERED)
    progress = db.Column(db.Integer, nullable=False, default=0)  # percent 0-100
    registered_at = db.Column(db.DateTime, default=_utcnow)
    completed_at = db.Column(db.DateTime)

    def set_progress(self, value):
        self.progress = max(0, min(100, int(round(float(value)))))

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'course_id': self.course_id,
            'status': self.status,
            'progress': self.progress,
            'registered_at': self.registered_at.isoformat() if self.registered_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }


class ApprovalAudit(db.Model):
    __tablename__ = 'approval_audit'

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(db.Integer, db.ForeignKey('enrollment.id', ondelete='CASCADE'), nullable=False)
    decided_by_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    decided_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    status_before = db.Column(db.String(20), nullable=False)
    status_after = db.Column(db.String(20), nullable=False)
    note = db.Column(db.String(255))

    enrollment = db.relationship('Enrollment', backref=db.backref('approval_audits', cascade='all, delete-orphan'))
    decided_by = db.relationship('User', foreign_keys=[decided_by_id])


class Notification(db.Model):
    __tablename__ = 'notification'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    message = db.Column(db.String(500), nullable=False)
    kind = db.Column(db.String(20), nullable=False, default='info')  # success / info / email
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'message': self.message,
            'type': self.kind,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class SignatureCropSession(db.Model):
    """Persisted state of one signature cropper, keyed by an opaque id."""
    __tablename__ = 'signature_crop_session'

    id = db.Column(db.String(36), primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey('course.course_id', ondelete='CASCADE'), nullable=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey('user.user_id'), nullable=False)
    original_image = db.Column(db.LargeBinary, nullable=False)
    preview_image = db.Column(db.LargeBinary)
    state_json = db.Column(db.Text, nullable=False, default='{}')
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    course = db.relationship('Course', backref=db.backref('crop_sessions', cascade='all, delete-orphan'))

    @property
    def snapshot(self):
        try:
            return json.loads(self.state_json or '{}')
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        snap = self.snapshot
        return {
            'id': self.id,
            'course_id': self.course_id,
            'state': snap.get('state'),
            'dimensions': snap.get('dims'),
            'crop_box': snap.get('box'),
            'gesture_active': bool(snap.get('gesture')),
            'remove_background': snap.get('remove_background', True),
            'has_preview': self.preview_image is not None,
        }
