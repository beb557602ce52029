from datetime import datetime, timedelta, UTC

from notifications import notify, live_notifications, purge_expired, send_email_simulation, NOTIFICATION_TTL


def test_registration_creates_welcome_notification(student_client):
    notes = student_client.get('/api/notifications').get_json()['notifications']
    assert [n['type'] for n in notes] == ['success']
    assert notes[0]['message'].startswith('Welcome to Deepmetrics')


def test_course_registration_notifies_and_emails(student_client, first_course_id):
    student_client.post(f'/api/courses/{first_course_id}/register')
    kinds = [n['type'] for n in student_client.get('/api/notifications').get_json()['notifications']]
    assert 'email' in kinds
    assert kinds.count('success') >= 2


def test_dismiss(student_client):
    note_id = student_client.get('/api/notifications').get_json()['notifications'][0]['id']
    assert student_client.delete(f'/api/notifications/{note_id}').status_code == 200
    assert student_client.get('/api/notifications').get_json()['notifications'] == []
    assert student_client.delete(f'/api/notifications/{note_id}').status_code == 404


def test_expired_notifications_are_hidden_and_purged(appmod):
    with appmod.app.app_context():
        user = appmod.User(name='Yaw', email='yaw@example.com')
        appmod.db.session.add(user)
        appmod.db.session.flush()
        fresh = notify(user, 'still here')
        stale = notify(user, 'gone', 'success')
        stale.expires_at = datetime.now(UTC) - timedelta(seconds=1)
        appmod.db.session.commit()

        assert [n.message for n in live_notifications(user)] == ['still here']
        assert purge_expired() == 1
        assert fresh.expires_at - fresh.created_at == NOTIFICATION_TTL


def test_unknown_kind_falls_back_to_info(appmod):
    with appmod.app.app_context():
        user = appmod.User(name='Yaw', email='yaw@example.com')
        appmod.db.session.add(user)
        appmod.db.session.flush()
        assert notify(user, 'hello', 'fireworks').kind == 'info'
        appmod.db.session.rollback()


def test_email_simulation_without_mail(appmod, caplog):
    with appmod.app.app_context():
        user = appmod.User(name='Yaw', email='yaw@example.com')
        appmod.db.session.add(user)
        appmod.db.session.flush()
        with caplog.at_level('INFO'):
            send_email_simulation('yaw@example.com', 'Hello', 'Body text', notify_user=user)
        appmod.db.session.commit()
        assert 'Subject: Hello' in caplog.text
        assert [n.kind for n in live_notifications(user)] == ['email']
