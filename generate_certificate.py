import os
import io
import logging
from datetime import date
from PyPDF2 import PdfReader, PdfWriter
from PIL import Image
from reportlab.pdfgen import canvas
from reportlab.lib.colors import HexColor
from reportlab.lib.utils import ImageReader

# Fixed landscape page, one unit per CSS pixel of the on-screen certificate
PAGE_WIDTH = 1123
PAGE_HEIGHT = 794
PAGE_SIZE = (PAGE_WIDTH, PAGE_HEIGHT)

INSTITUTE_NAME = 'Deepmetrics Analytics Institute'
CERT_ID_PREFIX = 'DMAI'
CERT_ID_ALPHABET = '0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ'

# Signature slot on the page keeps the cropper's 512:224 ratio
SIGNATURE_SLOT = (192, 84)
QUALITY_SCALES = {'standard': 2, 'high': 4}

THEMES = {
    'classic': {
        'background': '#FAFAFA',
        'primary': '#111827',
        'secondary': '#4B5563',
        'accent': '#B49126',
        'font_head': 'Times-Bold',
        'font_body': 'Times-Roman',
        'font_italic': 'Times-Italic',
    },
    'modern': {
        'background': '#FFFFFF',
        'primary': '#0F172A',
        'secondary': '#64748B',
        'accent': '#4F46E5',
        'font_head': 'Helvetica-Bold',
        'font_body': 'Helvetica',
        'font_italic': 'Helvetica-Oblique',
    },
    'elegant': {
        'background': '#FAFAF9',
        'primary': '#022C22',
        'secondary': '#57534E',
        'accent': '#065F46',
        'font_head': 'Times-Bold',
        'font_body': 'Helvetica',
        'font_italic': 'Times-Italic',
    },
}


class CertificateRenderError(RuntimeError):
    """PDF export failed; the client should fall back to printing the page."""


def _to_int32(value):
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def certificate_id(user_id, course_id, email, year=None):
    """Deterministic id such as DMAI-2026-7K2Q-0XAB-91ZZ for one user/course pair."""
    source = f'{user_id}-{course_id}-{email}'
    h = 5381
    for ch in source:
        h = _to_int32(_to_int32(h) << 5) + h + ord(ch)
    seed = abs(h)
    code = ''
    for _ in range(12):
        code += CERT_ID_ALPHABET[seed % 36]
        seed = (seed * 1664525 + 1013904223) % 4294967296
    year = year or date.today().year
    return f'{CERT_ID_PREFIX}-{year}-{code[0:4]}-{code[4:8]}-{code[8:12]}'


def format_issue_date(d):
    # e.g. 19 October 2026
    return f'{d.day} {d.strftime("%B %Y")}'


def certificate_filename(user, course):
    return f'Certificate - {user.name} - {course.title}.pdf'


def _signature_reader(png_bytes, quality):
    """Resample the stored signature to the slot size at the requested pixel scale."""
    scale = QUALITY_SCALES[quality]
    img = Image.open(io.BytesIO(png_bytes)).convert('RGBA')
    target = (SIGNATURE_SLOT[0] * scale, SIGNATURE_SLOT[1] * scale)
    if img.size != target:
        img = img.resize(target, Image.Resampling.LANCZOS)
    buf = io.BytesIO()
    img.save(buf, format='PNG')
    buf.seek(0)
    return ImageReader(buf)


def _draw_overlay(can, theme, user, course, issued_on, cert_id, quality, draw_background):
    primary = HexColor(theme['primary'])
    secondary = HexColor(theme['secondary'])
    accent = HexColor(theme['accent'])

    if draw_background:
        can.setFillColor(HexColor(theme['background']))
        can.rect(0, 0, PAGE_WIDTH, PAGE_HEIGHT, fill=True, stroke=False)

    # Double frame
    can.setStrokeColor(accent)
    can.setLineWidth(6)
    can.rect(24, 24, PAGE_WIDTH - 48, PAGE_HEIGHT - 48)
    can.setLineWidth(1.5)
    can.rect(40, 40, PAGE_WIDTH - 80, PAGE_HEIGHT - 80)

    cx = PAGE_WIDTH / 2

    can.setFillColor(primary)
    can.setFont(theme['font_head'], 26)
    can.drawCentredString(cx, PAGE_HEIGHT - 110, INSTITUTE_NAME.upper())

    can.setFillColor(accent)
    can.setFont(theme['font_head'], 44)
    can.drawCentredString(cx, PAGE_HEIGHT - 190, 'Certificate of Completion')

    can.setFillColor(secondary)
    can.setFont(theme['font_italic'], 18)
    can.drawCentredString(cx, PAGE_HEIGHT - 250, 'This is to certify that')

    can.setFillColor(primary)
    can.setFont(theme['font_head'], 40)
    can.drawCentredString(cx, PAGE_HEIGHT - 310, user.name)
    can.setStrokeColor(accent)
    can.setLineWidth(1)
    can.line(cx - 260, PAGE_HEIGHT - 325, cx + 260, PAGE_HEIGHT - 325)

    can.setFillColor(secondary)
    can.setFont(theme['font_body'], 18)
    can.drawCentredString(cx, PAGE_HEIGHT - 370, 'has successfully completed the training program')

    can.setFillColor(accent)
    can.setFont(theme['font_head'], 28)
    can.drawCentredString(cx, PAGE_HEIGHT - 420, course.title)

    # Date block (left) and signature block (right)
    line_y = 170
    left_x = 260
    right_x = PAGE_WIDTH - 260

    can.setFillColor(primary)
    can.setFont(theme['font_body'], 18)
    can.drawCentredString(left_x, line_y + 12, format_issue_date(issued_on))
    can.setStrokeColor(secondary)
    can.line(left_x - 120, line_y, left_x + 120, line_y)
    can.setFillColor(secondary)
    can.setFont(theme['font_body'], 13)
    can.drawCentredString(left_x, line_y - 20, 'Date of Issue')

    if course.signature_image:
        try:
            reader = _signature_reader(course.signature_image, quality)
            slot_w, slot_h = SIGNATURE_SLOT
            can.drawImage(reader, right_x - slot_w / 2, line_y + 2, width=slot_w, height=slot_h, mask='auto')
        except (OSError, ValueError):
            # Certificate still renders without the signature
            logging.exception('[CERTIFICATE] Could not embed signature for course %s', course.course_id)
    can.setStrokeColor(secondary)
    can.line(right_x - 120, line_y, right_x + 120, line_y)
    can.setFillColor(primary)
    can.setFont(theme['font_body'], 15)
    can.drawCentredString(right_x, line_y - 20, course.instructor)
    can.setFillColor(secondary)
    can.setFont(theme['font_body'], 12)
    can.drawCentredString(right_x, line_y - 38, 'Lead Instructor')

    can.setFillColor(secondary)
    can.setFont('Courier', 11)
    can.drawCentredString(cx, 62, f'Certificate ID: {cert_id}')


def generate_certificate(user, course, template='classic', quality='high', issued_on=None, background_path=None):
    """Render a one-page certificate PDF and return its bytes.

    When `background_path` points to a PDF, its first page is used as the
    background and the certificate text is merged on top of it.
    """
    if template not in THEMES:
        raise ValueError(f'Unknown certificate template: {template}')
    if quality not in QUALITY_SCALES:
        raise ValueError(f'Unknown download quality: {quality}')
    issued_on = issued_on or date.today()
    cert_id = certificate_id(user.user_id, course.course_id, user.email, issued_on.year)
    use_background = bool(background_path) and os.path.exists(background_path)
    if background_path and not use_background:
        logging.warning('[CERTIFICATE] Background template not found: %s', background_path)

    try:
        packet = io.BytesIO()
        can = canvas.Canvas(packet, pagesize=PAGE_SIZE)
        can.setTitle(certificate_filename(user, course)[:-4])
        can.setAuthor(INSTITUTE_NAME)
        _draw_overlay(can, THEMES[template], user, course, issued_on, cert_id, quality,
                      draw_background=not use_background)
        can.showPage()
        can.save()
        packet.seek(0)

        if not use_background:
            return packet.getvalue()

        # Merge overlay with template
        template_pdf = PdfReader(background_path)
        overlay_pdf = PdfReader(packet)
        output_pdf = PdfWriter()
        page = template_pdf.pages[0]
        page.merge_page(overlay_pdf.pages[0])
        output_pdf.add_page(page)
        out = io.BytesIO()
        output_pdf.write(out)
        return out.getvalue()
    except Exception as e:
        logging.exception('[CERTIFICATE] PDF generation failed for user %s course %s', user.user_id, course.course_id)
        raise CertificateRenderError(str(e)) from e
