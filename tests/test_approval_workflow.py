import logging


def _pending_enrollment(student_client, course_id):
    assert student_client.post(f'/api/courses/{course_id}/register').status_code == 201
    r = student_client.post(f'/api/courses/{course_id}/request_completion')
    assert r.get_json()['submitted'] is True
    return r.get_json()['enrollment']['id']


def test_register_course_once(student_client, first_course_id):
    r = student_client.post(f'/api/courses/{first_course_id}/register')
    assert r.status_code == 201
    r = student_client.post(f'/api/courses/{first_course_id}/register')
    assert r.get_json()['already_registered'] is True


def test_progress_is_clamped(student_client, first_course_id):
    student_client.post(f'/api/courses/{first_course_id}/register')
    r = student_client.post(f'/api/courses/{first_course_id}/progress', json={'progress': 140})
    assert r.get_json()['enrollment']['progress'] == 100
    r = student_client.post(f'/api/courses/{first_course_id}/progress', json={'progress': '42.6'})
    assert r.get_json()['enrollment']['progress'] == 43
    r = student_client.post(f'/api/courses/{first_course_id}/progress', json={'progress': 'lots'})
    assert r.status_code == 400


def test_request_completion_is_idempotent(student_client, first_course_id):
    _pending_enrollment(student_client, first_course_id)
    r = student_client.post(f'/api/courses/{first_course_id}/request_completion')
    assert r.get_json()['already_submitted'] is True
    me = student_client.get('/api/me').get_json()['user']
    assert me['pending_course_ids'] == [first_course_id]


def test_request_completion_without_enrollment(student_client, first_course_id):
    r = student_client.post(f'/api/courses/{first_course_id}/request_completion')
    assert r.status_code == 404


def test_admin_inbox_and_approve(student_client, admin_client, first_course_id, appmod, caplog):
    enrollment_id = _pending_enrollment(student_client, first_course_id)

    inbox = admin_client.get('/api/admin/requests').get_json()
    assert inbox['count'] == 1
    assert inbox['requests'][0]['user']['email'] == 'student@example.com'
    dash = admin_client.get('/api/dashboard').get_json()
    assert dash['pending_count'] == 1
    assert dash['pending_requests'][0]['enrollment_id'] == enrollment_id

    with caplog.at_level(logging.INFO):
        r = admin_client.post(f'/api/admin/requests/{enrollment_id}/approve')
    assert r.status_code == 200
    assert r.get_json()['enrollment']['status'] == 'completed'
    assert r.get_json()['enrollment']['progress'] == 100
    assert '[EMAIL SIMULATION]' in caplog.text
    assert 'Congratulations!' in caplog.text

    me = student_client.get('/api/me').get_json()['user']
    assert me['completed_course_ids'] == [first_course_id]
    assert me['pending_course_ids'] == []

    with appmod.app.app_context():
        audits = appmod.ApprovalAudit.query.filter_by(enrollment_id=enrollment_id).all()
        assert [(a.status_before, a.status_after) for a in audits] == [('pending', 'completed')]

    # Deciding twice is a conflict
    assert admin_client.post(f'/api/admin/requests/{enrollment_id}/approve').status_code == 409


def test_reject_returns_to_registered(student_client, admin_client, first_course_id, caplog):
    enrollment_id = _pending_enrollment(student_client, first_course_id)
    with caplog.at_level(logging.INFO):
        r = admin_client.post(f'/api/admin/requests/{enrollment_id}/reject', json={'note': 'Missing project'})
    assert r.get_json()['enrollment']['status'] == 'registered'
    assert 'Action Required' in caplog.text
    assert admin_client.get('/api/admin/requests').get_json()['count'] == 0


def test_decide_unknown_request(admin_client):
    assert admin_client.post('/api/admin/requests/9999/approve').status_code == 404


def test_student_cannot_approve(student_client, first_course_id):
    enrollment_id = _pending_enrollment(student_client, first_course_id)
    r = student_client.post(f'/api/admin/requests/{enrollment_id}/approve')
    assert r.status_code == 403
    r = student_client.post('/api/admin/requests/bulk_approve', json={'ids': [enrollment_id]})
    assert r.status_code == 403


def test_bulk_approve(student_client, admin_client, appmod):
    with appmod.app.app_context():
        course_ids = [c.course_id for c in appmod.Course.query.order_by(appmod.Course.course_id).limit(3)]
    pending = [_pending_enrollment(student_client, cid) for cid in course_ids[:2]]
    student_client.post(f'/api/courses/{course_ids[2]}/register')
    with appmod.app.app_context():
        registered_only = appmod.Enrollment.query.filter_by(course_id=course_ids[2]).first().id

    r = admin_client.post('/api/admin/requests/bulk_approve', json={'ids': pending + [registered_only]})
    assert r.status_code == 200
    body = r.get_json()
    assert body['requested'] == 3
    assert body['approved'] == 2
    assert body['skipped'] == 1

    # Second call approves nothing
    r = admin_client.post('/api/admin/requests/bulk_approve', json={'ids': pending})
    assert r.get_json()['approved'] == 0

    with appmod.app.app_context():
        assert appmod.ApprovalAudit.query.count() == 2
        statuses = {e.id: e.status for e in appmod.Enrollment.query.all()}
    assert statuses[pending[0]] == statuses[pending[1]] == 'completed'
    assert statuses[registered_only] == 'registered'


def test_bulk_approve_validation(admin_client):
    assert admin_client.post('/api/admin/requests/bulk_approve', json={'ids': []}).status_code == 400
    assert admin_client.post('/api/admin/requests/bulk_approve', json={'ids': ['1']}).status_code == 400
    assert admin_client.post('/api/admin/requests/bulk_approve', json={'ids': list(range(101))}).status_code == 400


def test_progress_overview(student_client, admin_client, first_course_id):
    _pending_enrollment(student_client, first_course_id)
    r = admin_client.get('/api/admin/progress').get_json()
    assert r['total_students'] == 1
    assert r['pending_count'] == 1
    assert r['enrollments'][0]['status_label'] == 'Pending Review'
