"""
Routes for the Deepmetrics app, using Flask Blueprint.
Authentication, the public catalog, course administration, enrollment and
progress, certificate download and notifications.
"""
from flask import Blueprint, request, jsonify, current_app, send_file, url_for
from flask_login import login_user, login_required, logout_user, current_user
from io import BytesIO
import logging
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from models import db, User, Course, Enrollment, COURSE_LEVELS, REGISTERED, PENDING, COMPLETED
from utils import (is_valid_email, normalize_email, parse_tags, parse_price, json_error, is_admin,
                   admin_required, MIN_PASSWORD_LENGTH, MIN_NAME_LENGTH)
from notifications import notify, live_notifications, purge_expired, dismiss, send_email_simulation
from generate_certificate import generate_certificate, certificate_filename, CertificateRenderError
from admin_routes import pending_request_list, progress_summary

main_bp = Blueprint('main', __name__)

RESET_SALT = 'password-reset-salt'
RESET_MAX_AGE = 3600  # 1 hour


def _payload():
    """JSON body if present, otherwise form fields."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _get_course_or_404(course_id):
    return db.session.get(Course, course_id)


@main_bp.route('/')
def index():
    return jsonify({
        'name': 'Deepmetrics Analytics Institute',
        'authenticated': current_user.is_authenticated,
        'courses': url_for('main.list_courses'),
    })


# -- Authentication (simulated) ---------------------------------------------

def _check_admin_credentials(email, password):
    """Return (is_admin_attempt, error_message)."""
    is_admin_attempt = email == current_app.config['ADMIN_EMAIL']
    if is_admin_attempt and password != current_app.config['ADMIN_PASSWORD']:
        return True, 'Invalid administrator credentials.'
    return is_admin_attempt, None


@main_bp.route('/api/register', methods=['POST'])
def register():
    data = _payload()
    name = (data.get('name') or '').strip()
    email = normalize_email(data.get('email'))
    password = data.get('password') or ''
    confirm = data.get('confirm_password') or ''

    if not is_valid_email(email):
        return json_error('Please enter a valid email address.')
    is_admin_attempt, err = _check_admin_credentials(email, password)
    if err:
        return json_error(err, 401)
    if len(name) < MIN_NAME_LENGTH:
        return json_error('Please enter your full name.')
    if password != confirm:
        return json_error('Passwords do not match.')
    if not is_admin_attempt and len(password) < MIN_PASSWORD_LENGTH:
        return json_error(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')

    try:
        if User.query.filter_by(email=email).first():
            return json_error(f'Email {email} is already registered. Please sign in instead.', 409)
        user = User(name=name, email=email, role='admin' if is_admin_attempt else 'student')
        user.set_password(password)
        db.session.add(user)
        db.session.flush()
        notify(user, f'Welcome to Deepmetrics, {name}!', 'success')
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception('[REGISTER] Registration failed')
        return json_error('Registration failed. Please try again.', 500)

    login_user(user)
    logging.info('[REGISTER] New %s account %s', user.role, email)
    return jsonify({'success': True, 'user': user.to_dict()}), 201


@main_bp.route('/api/login', methods=['POST'])
def login():
    data = _payload()
    email = normalize_email(data.get('email'))
    password = data.get('password') or ''

    if not is_valid_email(email):
        return json_error('Please enter a valid email address.')
    is_admin_attempt, err = _check_admin_credentials(email, password)
    if err:
        return json_error(err, 401)
    if not is_admin_attempt and len(password) < MIN_PASSWORD_LENGTH:
        return json_error(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')

    try:
        user = User.query.filter_by(email=email).first()
        if not user:
            # Unknown accounts are created on first sign-in
            user = User(name='Institute Owner' if is_admin_attempt else 'Returning User', email=email,
                        role='admin' if is_admin_attempt else 'student')
            user.set_password(password)
            db.session.add(user)
            db.session.flush()
            notify(user, f'Welcome to Deepmetrics, {user.name}!', 'success')
        else:
            if not is_admin_attempt and user.password_hash and not user.check_password(password):
                return json_error('Invalid email or password.', 401)
            if is_admin_attempt and user.role != 'admin':
                user.role = 'admin'
            notify(user, f'Welcome back, {user.name}!', 'success')
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception('[LOGIN] Database error during authentication')
        return json_error('Database error. Please try again later.', 500)

    login_user(user)
    return jsonify({'success': True, 'user': user.to_dict()})


@main_bp.route('/api/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'success': True, 'message': 'You have successfully logged out.'})


@main_bp.route('/api/me')
@login_required
def me():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@main_bp.route('/api/forgot_password', methods=['POST'])
def forgot_password():
    """Email a reset link. The answer never reveals whether the account exists."""
    email = normalize_email(_payload().get('email'))
    if not is_valid_email(email):
        return json_error('Please enter a valid email address.')

    neutral = {'success': True, 'message': 'If an account with that email exists, a password reset link has been sent.'}
    try:
        user = User.query.filter_by(email=email).first()
    except Exception:
        logging.exception('[FORGOT PASSWORD] DB lookup failed')
        user = None
    if not user:
        return jsonify(neutral)

    serializer = URLSafeTimedSerializer(current_app.config['SECRET_KEY'])
    token = serializer.dumps(email, salt=RESET_SALT)
    reset_link = url_for('main.reset_password', token=token, _external=True)
    send_email_simulation(
        email,
        'Password reset for Deepmetrics Analytics Institute',
        f"Hello {user.name},\n\nWe received a request to reset your password. "
        f"Use the link below within one hour:\n\n{reset_link}\n\n"
        f"If you did not request this, please ignore this message.\n\n-- Deepmetrics Team",
    )
    db.session.commit()
    return jsonify(neutral)


@main_bp.route('/api/reset_password/<token>', methods=['POST'])
def reset_password(token):
    serializer = URLSafeTimedSerializer(current_app.config['SECRET_KEY'])
    try:
        email = serializer.loads(token, salt=RESET_SALT, max_age=RESET_MAX_AGE)
    except (BadSignature, SignatureExpired):
        return json_error('The password reset link is invalid or has expired.')

    data = _payload()
    new_password = data.get('new_password') or ''
    if new_password != (data.get('confirm_password') or ''):
        return json_error('New password and confirmation do not match.')
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return json_error(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long.')

    user = User.query.filter_by(email=email).first()
    if not user:
        return json_error('The password reset link is invalid or has expired.')
    try:
        user.set_password(new_password)
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception('[RESET PASSWORD] Failed to update password')
        return json_error('Failed to reset password. Please try again later.', 500)
    return jsonify({'success': True, 'message': 'Your password has been reset successfully.'})


# -- Catalog ----------------------------------------------------------------

@main_bp.route('/api/courses')
def list_courses():
    courses = Course.query.order_by(Course.course_id.asc()).all()
    return jsonify({'success': True, 'courses': [c.to_dict() for c in courses]})


@main_bp.route('/api/courses/<int:course_id>')
def get_course(course_id):
    course = _get_course_or_404(course_id)
    if not course:
        return json_error('Training program not found.', 404)
    return jsonify({'success': True, 'course': course.to_dict()})


def _apply_course_fields(course, data, creating):
    """Validate and copy editable fields onto `course`. Raises ValueError on bad input."""
    for field in ('title', 'instructor', 'duration', 'image'):
        if field in data or creating:
            value = (data.get(field) or '').strip()
            if not value:
                raise ValueError(f'{field.capitalize()} is required.')
            setattr(course, field, value)
    if 'description' in data:
        course.description = data.get('description') or ''
    if 'level' in data or creating:
        level = data.get('level') or 'Beginner'
        if level not in COURSE_LEVELS:
            raise ValueError(f"Level must be one of: {', '.join(COURSE_LEVELS)}.")
        course.level = level
    if 'price' in data or creating:
        course.price = parse_price(data.get('price', 0))
    if 'tags' in data:
        course.tags = parse_tags(data.get('tags'))
    # Only clearing is allowed here; new signatures go through the cropper
    if 'signature_image' in data:
        if data['signature_image'] is not None:
            raise ValueError('Upload signatures through the signature cropper.')
        course.set_signature(None)


@main_bp.route('/api/courses', methods=['POST'])
@admin_required
def create_course():
    course = Course(description='')
    try:
        _apply_course_fields(course, _payload(), creating=True)
        db.session.add(course)
        notify(current_user, 'New training program created successfully', 'success')
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return json_error(str(e))
    except Exception:
        db.session.rollback()
        logging.exception('[CREATE COURSE] Failed to create course')
        return json_error('Error creating training program.', 500)
    logging.info(f'[CREATE COURSE] {current_user.email} created course {course.course_id}')
    return jsonify({'success': True, 'course': course.to_dict()}), 201


@main_bp.route('/api/courses/<int:course_id>', methods=['PUT', 'PATCH'])
@admin_required
def update_course(course_id):
    course = _get_course_or_404(course_id)
    if not course:
        return json_error('Training program not found.', 404)
    try:
        _apply_course_fields(course, _payload(), creating=False)
        notify(current_user, 'Training program updated successfully', 'success')
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        return json_error(str(e))
    except Exception:
        db.session.rollback()
        logging.exception(f'[UPDATE COURSE] Failed to update course {course_id}')
        return json_error('Error updating training program.', 500)
    return jsonify({'success': True, 'course': course.to_dict()})


@main_bp.route('/api/courses/<int:course_id>', methods=['DELETE'])
@admin_required
def delete_course(course_id):
    course = _get_course_or_404(course_id)
    if not course:
        return json_error('Training program not found.', 404)
    try:
        db.session.delete(course)
        notify(current_user, 'Training program deleted successfully', 'success')
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception(f'[DELETE COURSE] Failed to delete course {course_id}')
        return json_error('Error deleting training program.', 500)
    logging.info(f'[DELETE COURSE] {current_user.email} deleted course {course_id}')
    return jsonify({'success': True})


# -- Enrollment and progress ------------------------------------------------

@main_bp.route('/api/courses/<int:course_id>/register', methods=['POST'])
@login_required
def register_course(course_id):
    course = _get_course_or_404(course_id)
    if not course:
        return json_error('Training program not found.', 404)
    if current_user.enrollment_for(course_id):
        notify(current_user, 'You are already registered for this training program.', 'info')
        db.session.commit()
        return jsonify({'success': True, 'already_registered': True})
    try:
        enrollment = Enrollment(user_id=current_user.user_id, course_id=course_id, status=REGISTERED, progress=0)
        db.session.add(enrollment)
        notify(current_user, f'Successfully registered for {course.title}!', 'success')
        send_email_simulation(
            current_user.email,
            'Training Registration Confirmation',
            f"Dear {current_user.name},\n\nYou have successfully registered for {course.title}. "
            f"We are excited to have you on board!\n\nBest,\nDeepmetrics Team",
            notify_user=current_user,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logging.exception(f'[REGISTER COURSE] Failed for user {current_user.user_id} course {course_id}')
        return json_error('Registration failed. Please try again.', 500)
    return jsonify({'success': True, 'enrollment': enrollment.to_dict()}), 201


@main_bp.route('/api/courses/<int:course_id>/progress', methods=['POST'])
@login_required
def update_progress(course_id):
    enrollment = current_user.enrollment_for(course_id)
    if not enrollment:
        return json_error('You are not registered for this training program.', 404)
    try:
        enrollment.set_progress(_payload().get('progress'))
    except (TypeError, ValueError):
        return json_error('Progress must be a number between 0 and 100.')
    db.session.commit()
    return jsonify({'success': True, 'enrollment': enrollment.to_dict()})


@main_bp.route('/api/courses/<int:course_id>/request_completion', methods=['POST'])
@login_required
def request_completion(course_id):
    """Send a completion request to the admins; completed and pending requests are no-ops."""
    course = _get_course_or_404(course_id)
    enrollment = current_user.enrollment_for(course_id)
    if not course or not enrollment:
        return json_error('You are not registered for this training program.', 404)
    if enrollment.status == COMPLETED:
        notify(current_user, 'You have already completed this training program.', 'info')
        db.session.commit()
        return jsonify({'success': True, 'already_completed': True})
    if enrollment.status == PENDING:
        return jsonify({'success': True, 'already_submitted': True})
    enrollment.status = PENDING
    notify(current_user, f'Completion request sent for {course.title}', 'info')
    db.session.commit()
    logging.info(f'[COMPLETION REQUEST] User {current_user.user_id} requested completion of course {course_id}')
    return jsonify({'success': True, 'submitted': True, 'enrollment': enrollment.to_dict()})


@main_bp.route('/api/dashboard')
@login_required
def dashboard():
    rows = (
        db.session.query(Enrollment, Course)
        .join(Course, Course.course_id == Enrollment.course_id)
        .filter(Enrollment.user_id == current_user.user_id)
        .order_by(Enrollment.registered_at.asc())
        .all()
    )
    my_courses = [dict(course.to_dict(), status=e.status, progress=e.progress) for e, course in rows]
    payload = {'success': True, 'user': current_user.to_dict(), 'courses': my_courses}
    if is_admin():
        summary = progress_summary()
        payload['pending_count'] = summary['pending_count']
        payload['pending_requests'] = pending_request_list()
        payload['progress_overview'] = summary
    return jsonify(payload)


# -- Certificates -----------------------------------------------------------

@main_bp.route('/api/certificates/<int:course_id>')
@login_required
def download_certificate(course_id):
    """Render the certificate PDF for a completed course (admins may preview any)."""
    course = _get_course_or_404(course_id)
    if not course:
        return json_error('Training program not found.', 404)
    template = request.args.get('template', 'classic')
    quality = request.args.get('quality', 'high')

    holder = current_user
    if is_admin():
        target_id = request.args.get('user_id', type=int)
        if target_id:
            holder = db.session.get(User, target_id)
            if not holder:
                return json_error('User not found.', 404)
    else:
        enrollment = current_user.enrollment_for(course_id)
        if not enrollment or enrollment.status != COMPLETED:
            return json_error('Certificate is available once your completion is approved.', 403)

    try:
        pdf = generate_certificate(holder, course, template=template, quality=quality,
                                   background_path=current_app.config.get('CERTIFICATE_TEMPLATE_PATH'))
    except ValueError as e:
        return json_error(str(e))
    except CertificateRenderError:
        return json_error('Could not generate PDF directly. Please use the Print option.', 500, fallback='print')

    return send_file(BytesIO(pdf), mimetype='application/pdf', as_attachment=True,
                     download_name=certificate_filename(holder, course))


# -- Notifications ----------------------------------------------------------

@main_bp.route('/api/notifications')
@login_required
def get_notifications():
    purge_expired()
    notes = live_notifications(current_user)
    return jsonify({'success': True, 'notifications': [n.to_dict() for n in notes]})


@main_bp.route('/api/notifications/<int:notification_id>', methods=['DELETE'])
@login_required
def dismiss_notification(notification_id):
    if not dismiss(current_user, notification_id):
        return json_error('Notification not found.', 404)
    return jsonify({'success': True})
