from flask import Blueprint, request, jsonify
from flask_login import current_user
from sqlalchemy import update
from datetime import datetime, UTC
import logging

from models import db, Enrollment, User, Course, ApprovalAudit, REGISTERED, PENDING, COMPLETED
from notifications import notify, send_email_simulation
from utils import admin_required, json_error

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

BULK_LIMIT = 100

STATUS_LABELS = {
    REGISTERED: 'In Progress',
    PENDING: 'Pending Review',
    COMPLETED: 'Completed',
}


def _request_row(enrollment, user, course):
    return {
        'enrollment_id': enrollment.id,
        'user': {'id': user.user_id, 'name': user.name, 'email': user.email},
        'course': {'id': course.course_id, 'title': course.title},
        'status': enrollment.status,
        'status_label': STATUS_LABELS.get(enrollment.status, enrollment.status),
        'progress': enrollment.progress,
    }


def _congratulation_email(user, course):
    return (
        f"Dear {user.name},\n\n"
        f"We are thrilled to congratulate you on successfully completing the training program "
        f"\"{course.title}\" at Deepmetrics Analytics Institute!\n\n"
        f"Your dedication and hard work have paid off. Your official Certificate of Completion "
        f"has been generated and is now ready for you.\n\n"
        f"To download your certificate:\n"
        f"1. Log in to your Deepmetrics Dashboard.\n"
        f"2. Navigate to \"My Training Programs\".\n"
        f"3. Click the \"Download Certificate\" button on the course card.\n\n"
        f"We wish you the very best in your data analytics journey.\n\n"
        f"Warm regards,\nThe Deepmetrics Team"
    )


def _rejection_email(user, course):
    return (
        f"Dear {user.name},\n\n"
        f"Thank you for submitting your completion request for \"{course.title}\".\n\n"
        f"After reviewing your progress, we are unable to approve your completion request at this time. "
        f"This usually happens if there are outstanding assignments or if the training criteria "
        f"haven't been fully met.\n\n"
        f"Please reach out to your instructor, {course.instructor}, for specific feedback on what is "
        f"needed to complete the training.\n\n"
        f"Best regards,\nDeepmetrics Academic Administration"
    )


def _enrollment_rows(status=None):
    query = (
        db.session.query(Enrollment, User, Course)
        .join(User, User.user_id == Enrollment.user_id)
        .join(Course, Course.course_id == Enrollment.course_id)
    )
    if status:
        return query.filter(Enrollment.status == status).order_by(Enrollment.id.asc()).all()
    return query.order_by(User.name.asc(), Course.title.asc()).all()


def pending_request_list():
    """Completion requests waiting for a decision (the admin inbox)."""
    try:
        rows = _enrollment_rows(PENDING)
    except Exception:
        logging.exception('[ADMIN] Failed to load completion requests')
        rows = []
    return [_request_row(e, u, c) for e, u, c in rows]


def progress_summary():
    """Every student enrollment with its status and progress."""
    rows = _enrollment_rows()
    return {
        'total_students': len({u.user_id for _, u, _ in rows}),
        'pending_count': sum(1 for e, _, _ in rows if e.status == PENDING),
        'enrollments': [_request_row(e, u, c) for e, u, c in rows],
    }


@admin_bp.route('/requests', methods=['GET'])
@admin_required
def pending_requests():
    requests_list = pending_request_list()
    return jsonify({'success': True, 'count': len(requests_list), 'requests': requests_list})


@admin_bp.route('/progress', methods=['GET'])
@admin_required
def progress_overview():
    return jsonify(dict(progress_summary(), success=True))


def _decide(enrollment_id, approve):
    enrollment = db.session.get(Enrollment, enrollment_id)
    if not enrollment:
        return json_error('Completion request not found.', 404)
    if enrollment.status != PENDING:
        return json_error(f'Request is not pending (status: {enrollment.status}).', 409)

    user, course = enrollment.user, enrollment.course
    note = (request.get_json(silent=True) or {}).get('note')
    before = enrollment.status
    try:
        if approve:
            enrollment.status = COMPLETED
            enrollment.progress = 100
            enrollment.completed_at = datetime.now(UTC)
            notify(current_user, f'Approved completion for {user.name}. Certificate generated.', 'success')
            send_email_simulation(user.email, f'Congratulations! You have completed {course.title}',
                                  _congratulation_email(user, course), notify_user=current_user)
        else:
            enrollment.status = REGISTERED
            notify(current_user, f'Rejected completion for {user.name}', 'info')
            send_email_simulation(user.email, f'Action Required: Training Completion for {course.title}',
                                  _rejection_email(user, course), notify_user=current_user)
        db.session.add(ApprovalAudit(enrollment_id=enrollment.id, decided_by_id=current_user.user_id,
                                     status_before=before, status_after=enrollment.status,
                                     note=(note or None) and str(note)[:255]))
        db.session.commit()
    except Exception:
        logging.exception('[ADMIN] Decision failed for enrollment %s', enrollment_id)
        db.session.rollback()
        return json_error('Server error while saving the decision.', 500)

    logging.info('[ADMIN] %s %s enrollment=%s user=%s course=%s', current_user.email,
                 'approved' if approve else 'rejected', enrollment.id, user.user_id, course.course_id)
    return jsonify({'success': True, 'enrollment': enrollment.to_dict()})


@admin_bp.route('/requests/<int:enrollment_id>/approve', methods=['POST'])
@admin_required
def approve_request(enrollment_id):
    return _decide(enrollment_id, approve=True)


@admin_bp.route('/requests/<int:enrollment_id>/reject', methods=['POST'])
@admin_required
def reject_request(enrollment_id):
    return _decide(enrollment_id, approve=False)


@admin_bp.route('/requests/bulk_approve', methods=['POST'])
@admin_required
def bulk_approve():
    """Approve many pending requests in one UPDATE; non-pending ids are skipped."""
    payload = request.get_json(silent=True) or {}
    ids = payload.get('ids')
    if not isinstance(ids, list) or not ids:
        return json_error('no_requests_selected')
    if len(ids) > BULK_LIMIT:
        return json_error(f'At most {BULK_LIMIT} requests per call.')
    if not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        return json_error('invalid_request_ids')

    now = datetime.now(UTC)
    try:
        pending = (
            db.session.query(Enrollment)
            .filter(Enrollment.id.in_(ids), Enrollment.status == PENDING)
            .all()
        )
        pending_ids = [e.id for e in pending]
        approved_count = 0
        if pending_ids:
            # Idempotent: only rows still pending are touched
            stmt = (
                update(Enrollment)
                .where(Enrollment.id.in_(pending_ids), Enrollment.status == PENDING)
                .values(status=COMPLETED, progress=100, completed_at=now)
            )
            approved_count = db.session.execute(stmt).rowcount or 0
            for e in pending:
                db.session.add(ApprovalAudit(enrollment_id=e.id, decided_by_id=current_user.user_id,
                                             status_before=PENDING, status_after=COMPLETED, note='bulk'))
                send_email_simulation(e.user.email, f'Congratulations! You have completed {e.course.title}',
                                      _congratulation_email(e.user, e.course))
            notify(current_user, f'Approved {approved_count} completion request(s).', 'success')
        db.session.commit()
    except Exception:
        logging.exception('[ADMIN] bulk_approve failed for %s', current_user.email)
        db.session.rollback()
        return json_error('server_error', 500)

    logging.info('[ADMIN] %s bulk_approve approved=%d', current_user.email, approved_count)
    return jsonify({
        'success': True,
        'requested': len(ids),
        'approved': approved_count,
        'skipped': len(ids) - approved_count,
    })
