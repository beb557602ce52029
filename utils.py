"""
Shared helpers for the Deepmetrics app: input validation, JSON responses and
access decorators used by the route modules.
"""
from typing import Optional, Any
import re
from functools import wraps
from flask import jsonify
from flask_login import current_user

# Same shape the sign-in form accepts: local@domain.tld or local@[1.2.3.4]
EMAIL_RE = re.compile(
    r'^(([^<>()\[\]\\.,;:\s@"]+(\.[^<>()\[\]\\.,;:\s@"]+)*)|(".+"))@'
    r'((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$'
)

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2


def is_valid_email(email: Any) -> bool:
    if not isinstance(email, str):
        return False
    return EMAIL_RE.match(email.strip().lower()) is not None


def normalize_email(email: Optional[str]) -> str:
    return (email or '').strip().lower()


def parse_tags(value) -> list:
    """Accept a list or a comma separated string; trim and drop empties."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValueError('Tags must be a list or a comma separated string.')
    return [str(t).strip() for t in items if str(t).strip()]


def parse_price(value) -> float:
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValueError('Price must be a number.')
    if price < 0:
        raise ValueError('Price cannot be negative.')
    return price


def parse_float(value, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f'{field} must be a number.')


def json_error(message: str, status: int = 400, **extra):
    payload = {'success': False, 'message': message}
    payload.update(extra)
    return jsonify(payload), status


def is_admin(user=None) -> bool:
    if user is None:
        user = current_user
    if not user or not user.is_authenticated:
        return False
    return getattr(user, 'role', None) == 'admin'


def admin_required(f):
    """Decorator for JSON routes that only admins may call.

    Usage:
        @admin_required
        def my_protected_route():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return json_error('Please log in to access this resource.', 401)
        if not is_admin():
            return json_error('Access denied. Admin privileges required.', 403)
        return f(*args, **kwargs)
    return decorated_function
