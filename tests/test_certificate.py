import re
from datetime import date
from types import SimpleNamespace

import pytest

from generate_certificate import generate_certificate, certificate_id, format_issue_date, certificate_filename
from conftest import signature_png


def _holder():
    return SimpleNamespace(user_id=7, name='Akosua Student', email='student@example.com')


def _course(signature=None):
    return SimpleNamespace(course_id=3, title='Python for Data Science', instructor='Ama Owusu',
                           signature_image=signature)


def test_certificate_id_is_deterministic():
    a = certificate_id(7, 3, 'student@example.com', 2026)
    b = certificate_id(7, 3, 'student@example.com', 2026)
    assert a == b
    assert re.fullmatch(r'DMAI-2026-[0-9A-Z]{4}-[0-9A-Z]{4}-[0-9A-Z]{4}', a)
    assert certificate_id(8, 3, 'student@example.com', 2026) != a


def test_issue_date_format():
    assert format_issue_date(date(2026, 3, 5)) == '5 March 2026'


def test_filename():
    assert certificate_filename(_holder(), _course()) == 'Certificate - Akosua Student - Python for Data Science.pdf'


@pytest.mark.parametrize('template', ['classic', 'modern', 'elegant'])
def test_generate_pdf_for_each_theme(template):
    pdf = generate_certificate(_holder(), _course(), template=template, quality='standard')
    assert pdf.startswith(b'%PDF')


def test_generate_pdf_with_signature():
    from generate_certificate import _signature_reader
    png = signature_png((1536, 672))
    pdf = generate_certificate(_holder(), _course(png), quality='high')
    assert pdf.startswith(b'%PDF')
    assert _signature_reader(png, 'standard').getSize() == (384, 168)


def test_unknown_template_or_quality():
    with pytest.raises(ValueError):
        generate_certificate(_holder(), _course(), template='gothic')
    with pytest.raises(ValueError):
        generate_certificate(_holder(), _course(), quality='ultra')


def test_download_requires_completion(student_client, first_course_id):
    student_client.post(f'/api/courses/{first_course_id}/register')
    r = student_client.get(f'/api/certificates/{first_course_id}')
    assert r.status_code == 403


def test_download_after_approval(student_client, admin_client, first_course_id):
    student_client.post(f'/api/courses/{first_course_id}/register')
    enrollment_id = student_client.post(f'/api/courses/{first_course_id}/request_completion').get_json()['enrollment']['id']
    admin_client.post(f'/api/admin/requests/{enrollment_id}/approve')
    r = student_client.get(f'/api/certificates/{first_course_id}?template=modern&quality=standard')
    assert r.status_code == 200
    assert r.mimetype == 'application/pdf'
    assert r.data.startswith(b'%PDF')
    assert 'Certificate - Akosua Student' in r.headers['Content-Disposition']


def test_bad_template_query(admin_client, first_course_id):
    r = admin_client.get(f'/api/certificates/{first_course_id}?template=gothic')
    assert r.status_code == 400


def test_render_failure_falls_back_to_print(admin_client, first_course_id, monkeypatch):
    import routes
    from generate_certificate import CertificateRenderError

    def broken(*args, **kwargs):
        raise CertificateRenderError('boom')

    monkeypatch.setattr(routes, 'generate_certificate', broken)
    r = admin_client.get(f'/api/certificates/{first_course_id}')
    assert r.status_code == 500
    assert r.get_json()['fallback'] == 'print'
