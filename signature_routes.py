"""
Signature cropper endpoints.

Each upload opens a SignatureCropSession; the client then drives the crop box
with pointer gestures (start / move / end), previews the cropped raster and
finally commits it to the course or cancels. Illegal transitions answer 409.
"""
from flask import Blueprint, request, jsonify, send_file
from flask_login import current_user, login_required
from functools import wraps
from io import BytesIO
import json
import logging
import uuid

from models import db, Course, SignatureCropSession, update_course_signature
from signature_cropper import SignatureCropper, InvalidSignatureUpload, CropStateError
from notifications import notify
from utils import admin_required, json_error, parse_float

signature_bp = Blueprint('signature', __name__)


def _payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else request.form.to_dict()


def _session_response(row, **extra):
    body = {'success': True, 'session': row.to_dict()}
    body.update(extra)
    return jsonify(body)


def _store(row, cropper):
    row.state_json = json.dumps(cropper.snapshot())
    row.preview_image = cropper.preview


def with_cropper(f):
    """Load the crop session named in the URL, run the view, persist the cropper state."""
    @wraps(f)
    def decorated_function(session_id, *args, **kwargs):
        row = db.session.get(SignatureCropSession, session_id)
        if not row:
            return json_error('Signature session not found.', 404)
        cropper = SignatureCropper.restore(row.snapshot, row.original_image, row.preview_image)
        try:
            response = f(row, cropper, *args, **kwargs)
            _store(row, cropper)
            db.session.commit()
            return response
        except CropStateError as e:
            db.session.rollback()
            return json_error(str(e), 409, state=cropper.state)
        except ValueError as e:
            db.session.rollback()
            return json_error(str(e))
        except Exception:
            db.session.rollback()
            logging.exception('[SIGNATURE] %s failed for session %s', f.__name__, session_id)
            return json_error('Server error while editing the signature.', 500)
    return decorated_function


@signature_bp.route('/api/signatures', methods=['POST'])
@admin_required
def start_session():
    """Validate the upload and open a cropper on it."""
    course_id = request.form.get('course_id', type=int)
    course = db.session.get(Course, course_id) if course_id else None
    if not course:
        return json_error('Training program not found.', 404)
    file = request.files.get('file')
    if not file or not file.filename:
        return json_error('No file selected.')

    data = file.read()
    display_size = (request.form.get('display_width', type=float), request.form.get('display_height', type=float))
    cropper = SignatureCropper()
    try:
        cropper.load(data, filename=file.filename, mimetype=file.mimetype, display_size=display_size)
    except InvalidSignatureUpload as e:
        logging.info('[SIGNATURE] Rejected upload %s for course %s: %s', file.filename, course_id, e)
        return json_error(str(e))

    row = SignatureCropSession(id=str(uuid.uuid4()), course_id=course.course_id,
                               created_by_id=current_user.user_id, original_image=data)
    _store(row, cropper)
    try:
        db.session.add(row)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception('[SIGNATURE] Failed to open crop session for course %s', course_id)
        return json_error('Server error while saving the upload.', 500)
    logging.info('[SIGNATURE] Session %s opened for course %s (%dx%d)', row.id, course_id,
                 cropper.dims.natural_width, cropper.dims.natural_height)
    return _session_response(row), 201


@signature_bp.route('/api/signatures/<session_id>', methods=['GET'])
@admin_required
@with_cropper
def get_session(row, cropper):
    return _session_response(row)


@signature_bp.route('/api/signatures/<session_id>/source', methods=['GET'])
@admin_required
@with_cropper
def session_source(row, cropper):
    """The original upload, which stays the editing source for the whole session."""
    return send_file(BytesIO(row.original_image), mimetype=cropper.mimetype or 'application/octet-stream')


@signature_bp.route('/api/signatures/<session_id>/gesture/start', methods=['POST'])
@admin_required
@with_cropper
def gesture_start(row, cropper):
    data = _payload()
    cropper.begin_gesture(data.get('mode'), parse_float(data.get('x'), 'x'), parse_float(data.get('y'), 'y'))
    return _session_response(row, crop_box=cropper.box.to_dict())


@signature_bp.route('/api/signatures/<session_id>/gesture/move', methods=['POST'])
@admin_required
@with_cropper
def gesture_move(row, cropper):
    data = _payload()
    box = cropper.drag_to(parse_float(data.get('x'), 'x'), parse_float(data.get('y'), 'y'))
    return jsonify({'success': True, 'crop_box': box.to_dict()})


@signature_bp.route('/api/signatures/<session_id>/gesture/end', methods=['POST'])
@admin_required
@with_cropper
def gesture_end(row, cropper):
    cropper.end_gesture()
    return jsonify({'success': True, 'crop_box': cropper.box.to_dict() if cropper.box else None})


@signature_bp.route('/api/signatures/<session_id>/move', methods=['POST'])
@admin_required
@with_cropper
def move(row, cropper):
    data = _payload()
    box = cropper.move(parse_float(data.get('dx', 0), 'dx'), parse_float(data.get('dy', 0), 'dy'))
    return jsonify({'success': True, 'crop_box': box.to_dict()})


@signature_bp.route('/api/signatures/<session_id>/resize', methods=['POST'])
@admin_required
@with_cropper
def resize(row, cropper):
    data = _payload()
    box = cropper.resize(parse_float(data.get('dx', 0), 'dx'), parse_float(data.get('dy', 0), 'dy'))
    return jsonify({'success': True, 'crop_box': box.to_dict()})


@signature_bp.route('/api/signatures/<session_id>/maximize', methods=['POST'])
@admin_required
@with_cropper
def maximize(row, cropper):
    box = cropper.maximize()
    return jsonify({'success': True, 'crop_box': box.to_dict()})


@signature_bp.route('/api/signatures/<session_id>/apply', methods=['POST'])
@admin_required
@with_cropper
def apply_crop(row, cropper):
    flag = _payload().get('remove_background')
    if isinstance(flag, str):
        flag = flag.lower() in ('1', 'true', 'yes', 'on')
    png = cropper.apply(remove_background=flag)
    if png is None:
        return json_error('Could not render the signature. Please try again.', 422, retry=True)
    return _session_response(row)


@signature_bp.route('/api/signatures/<session_id>/preview', methods=['GET'])
@admin_required
@with_cropper
def preview(row, cropper):
    if not cropper.preview:
        return json_error('No preview rendered yet.', 404)
    return send_file(BytesIO(cropper.preview), mimetype='image/png')


@signature_bp.route('/api/signatures/<session_id>/reset', methods=['POST'])
@admin_required
@with_cropper
def reset(row, cropper):
    cropper.reset()
    return _session_response(row)


@signature_bp.route('/api/signatures/<session_id>/commit', methods=['POST'])
@admin_required
@with_cropper
def commit(row, cropper):
    png = cropper.commit()
    if png is None:
        return json_error('Could not render the signature. Please try again.', 422, retry=True)
    course = update_course_signature(row.course_id, png)
    if not course:
        raise CropStateError('The training program no longer exists.')
    notify(current_user, 'Training program updated successfully', 'success')
    logging.info('[SIGNATURE] Session %s committed to course %s', row.id, row.course_id)
    return _session_response(row, course=course.to_dict())


@signature_bp.route('/api/signatures/<session_id>/cancel', methods=['POST'])
@admin_required
@with_cropper
def cancel(row, cropper):
    cropper.cancel()
    return _session_response(row)


@signature_bp.route('/api/courses/<int:course_id>/signature', methods=['GET'])
@login_required
def course_signature(course_id):
    course = db.session.get(Course, course_id)
    if not course or not course.signature_image:
        return json_error('No signature uploaded.', 404)
    return send_file(BytesIO(course.signature_image), mimetype='image/png')


@signature_bp.route('/api/courses/<int:course_id>/signature', methods=['DELETE'])
@admin_required
def remove_course_signature(course_id):
    try:
        course = update_course_signature(course_id, None)
        if course:
            notify(current_user, 'Training program updated successfully', 'success')
            db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception('[SIGNATURE] Failed to remove signature of course %s', course_id)
        return json_error('Server error while removing the signature.', 500)
    if not course:
        return json_error('Training program not found.', 404)
    return jsonify({'success': True, 'course': course.to_dict()})


@signature_bp.route('/api/admin/signatures', methods=['GET'])
@admin_required
def signature_manager():
    """Which training programs already carry an instructor signature."""
    courses = Course.query.order_by(Course.title.asc()).all()
    return jsonify({'success': True, 'courses': [
        {'id': c.course_id, 'title': c.title, 'instructor': c.instructor, 'has_signature': c.has_signature,
         'signature_updated_at': c.signature_updated_at.isoformat() if c.signature_updated_at else None}
        for c in courses
    ]})
