from functools import wraps

from flask import jsonify, request, session


def json_error(message, status, **extra):
    return jsonify(error=message, **extra), status


def parse_id(value):
    """Parse a path or body id; returns None for anything that isn't a non-negative integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def parse_quantity(value):
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return parse_id(value)


def read_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# Session access happens only here and in the route functions; the cart,
# favorites and order helpers receive plain values.

def session_user():
    return session.get('user')


def guest_cart():
    return [dict(line) for line in session.get('guestCart') or []]


def set_guest_cart(lines):
    session['guestCart'] = lines


def guest_favorites():
    return list(session.get('guestFavorites') or [])


def set_guest_favorites(ids):
    session['guestFavorites'] = ids


def login_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        if not session_user():
            return json_error('Not logged in', 401)
        return f(*args, **kwargs)
    return wrapped


def admin_required(f):
    @wraps(f)
    def wrapped(*args, **kwargs):
        user = session_user()
        if not user:
            return json_error('Not logged in', 401)
        if user.get('role') != 'admin':
            return json_error('Admin only', 403)
        return f(*args, **kwargs)
    return wrapped
