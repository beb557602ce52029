"""
Short-lived user notifications and the simulated email channel.

Notifications replace the toast messages of the web client: each one lives for
NOTIFICATION_TTL seconds and can be dismissed earlier. Email is simulated by
logging the message; with MAIL_ENABLED the message is also handed to
Flask-Mail.
"""
import logging
from datetime import datetime, timedelta, UTC
from flask import current_app
from flask_mail import Message
from models import db, Notification

NOTIFICATION_TTL = timedelta(seconds=6)
NOTIFICATION_KINDS = ('success', 'info', 'email')


def notify(user, message, kind='info'):
    """Queue a notification for `user`. Caller commits."""
    if user is None or not getattr(user, 'user_id', None):
        return None
    if kind not in NOTIFICATION_KINDS:
        kind = 'info'
    now = datetime.now(UTC)
    note = Notification(user_id=user.user_id, message=message[:500], kind=kind,
                        created_at=now, expires_at=now + NOTIFICATION_TTL)
    db.session.add(note)
    return note


def live_notifications(user):
    now = datetime.now(UTC)
    return (
        Notification.query
        .filter(Notification.user_id == user.user_id, Notification.expires_at > now)
        .order_by(Notification.id.asc())
        .all()
    )


def purge_expired():
    """Delete expired notifications; returns the number removed."""
    now = datetime.now(UTC)
    removed = Notification.query.filter(Notification.expires_at <= now).delete(synchronize_session=False)
    db.session.commit()
    return removed


def dismiss(user, notification_id):
    note = Notification.query.filter_by(id=notification_id, user_id=user.user_id).first()
    if not note:
        return False
    db.session.delete(note)
    db.session.commit()
    return True


def send_email_simulation(to, subject, body, notify_user=None):
    """Log the email, optionally deliver it through Flask-Mail, and tell the acting user."""
    logging.info('[EMAIL SIMULATION]\nTo: %s\nSubject: %s\nBody: %s', to, subject, body)

    if current_app.config.get('MAIL_ENABLED'):
        mail_ext = current_app.extensions.get('mail')
        if mail_ext:
            try:
                mail_ext.send(Message(subject=subject, recipients=[to], body=body))
            except Exception:
                logging.exception('[EMAIL SIMULATION] Flask-Mail send failed for %s', to)

    if notify_user is not None:
        notify(notify_user, f'Email sent to {to}: {subject}', 'email')
