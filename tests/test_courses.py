NEW_COURSE = {
    'title': 'Statistics Refresher',
    'description': '<p>Descriptive statistics and hypothesis tests.</p>',
    'instructor': 'Abena Darko',
    'duration': '3 Weeks',
    'level': 'Beginner',
    'price': '800',
    'tags': 'Statistics, , Probability',
    'image': 'https://example.com/stats.png',
}


def test_public_catalog(client):
    r = client.get('/api/courses')
    assert r.status_code == 200
    courses = r.get_json()['courses']
    assert len(courses) == 4
    assert all(c['has_signature'] is False for c in courses)


def test_get_course_not_found(client):
    assert client.get('/api/courses/9999').status_code == 404


def test_create_course_as_admin(admin_client):
    r = admin_client.post('/api/courses', json=NEW_COURSE)
    assert r.status_code == 201
    course = r.get_json()['course']
    assert course['price'] == 800.0
    assert course['tags'] == ['Statistics', 'Probability']
    assert len(admin_client.get('/api/courses').get_json()['courses']) == 5


def test_create_course_validation(admin_client):
    assert admin_client.post('/api/courses', json=dict(NEW_COURSE, title='  ')).status_code == 400
    assert admin_client.post('/api/courses', json=dict(NEW_COURSE, level='Expert')).status_code == 400
    assert admin_client.post('/api/courses', json=dict(NEW_COURSE, price='-5')).status_code == 400
    assert admin_client.post('/api/courses', json=dict(NEW_COURSE, price='free')).status_code == 400


def test_student_cannot_manage_courses(student_client, first_course_id):
    assert student_client.post('/api/courses', json=NEW_COURSE).status_code == 403
    assert student_client.delete(f'/api/courses/{first_course_id}').status_code == 403


def test_anonymous_cannot_manage_courses(client):
    assert client.post('/api/courses', json=NEW_COURSE).status_code == 401


def test_update_course(admin_client, first_course_id):
    r = admin_client.put(f'/api/courses/{first_course_id}', json={'price': 999, 'tags': ['A', 'B']})
    assert r.status_code == 200
    course = r.get_json()['course']
    assert course['price'] == 999.0
    assert course['tags'] == ['A', 'B']


def test_update_course_cannot_set_signature_directly(admin_client, first_course_id):
    r = admin_client.put(f'/api/courses/{first_course_id}', json={'signature_image': 'data:image/png;base64,AAAA'})
    assert r.status_code == 400


def test_delete_course_removes_enrollments(admin_client, student_client, first_course_id, appmod):
    student_client.post(f'/api/courses/{first_course_id}/register')
    assert admin_client.delete(f'/api/courses/{first_course_id}').status_code == 200
    assert admin_client.get(f'/api/courses/{first_course_id}').status_code == 404
    with appmod.app.app_context():
        assert appmod.Enrollment.query.filter_by(course_id=first_course_id).count() == 0
