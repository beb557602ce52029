import io
import os
import importlib

import pytest
from PIL import Image

# In-memory SQLite for every test; must be set before the app module is imported
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'
os.environ['ADMIN_EMAIL'] = 'admin@deepmetrics.example'
os.environ['ADMIN_PASSWORD'] = 'admin-password'

ADMIN_EMAIL = 'admin@deepmetrics.example'
ADMIN_PASSWORD = 'admin-password'


def signature_png(size=(800, 400), ink=(20, 20, 20), paper=(255, 255, 255)):
    """A fake signature scan: dark stroke on white paper."""
    img = Image.new('RGB', size, paper)
    w, h = size
    for x in range(w // 4, 3 * w // 4):
        for y in range(h // 2 - 3, h // 2 + 3):
            img.putpixel((x, y), ink)
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def login(client, email, password='secret123'):
    return client.post('/api/login', json={'email': email, 'password': password})


def login_admin(client):
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture()
def appmod():
    flask_app_module = importlib.import_module('app')
    flask_app_module.app.config['TESTING'] = True
    with flask_app_module.app.app_context():
        flask_app_module.db.session.remove()
        flask_app_module.db.drop_all()
        flask_app_module.db.create_all()
        flask_app_module.seed_default_courses()
    yield flask_app_module
    with flask_app_module.app.app_context():
        flask_app_module.db.session.remove()


@pytest.fixture()
def client(appmod):
    return appmod.app.test_client()


@pytest.fixture()
def admin_client(appmod):
    c = appmod.app.test_client()
    r = login_admin(c)
    assert r.status_code == 200
    return c


@pytest.fixture()
def student_client(appmod):
    c = appmod.app.test_client()
    r = c.post('/api/register', json={
        'name': 'Akosua Student',
        'email': 'student@example.com',
        'password': 'secret123',
        'confirm_password': 'secret123',
    })
    assert r.status_code == 201
    return c


@pytest.fixture()
def first_course_id(appmod):
    with appmod.app.app_context():
        return appmod.Course.query.order_by(appmod.Course.course_id.asc()).first().course_id
