import hmac
import logging

from flask import Blueprint, jsonify, session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from .cart import merge_guest_cart
from .favorites import merge_guest_favorites
from .helpers import (guest_cart, guest_favorites, json_error, login_required, read_body,
                      session_user, set_guest_cart, set_guest_favorites)
from .models import User, db

log = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/api')

HASH_METHODS = ('scrypt', 'pbkdf2')
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


def is_password_hash(stored):
    if not stored or stored.count('$') != 2:
        return False
    return stored.split(':', 1)[0] in HASH_METHODS


def verify_password(user, password):
    """Check password against the user's stored credential.

    Rows written before hashing was introduced hold the plaintext password;
    a successful login against one of those replaces it with a hash.
    """
    if is_password_hash(user.password_hash):
        return check_password_hash(user.password_hash, password)
    if not hmac.compare_digest(user.password_hash.encode(), password.encode()):
        return False
    user.password_hash = generate_password_hash(password)
    db.session.commit()
    log.info('Upgraded plaintext password to hash for user %s', user.username)
    return True


def merge_guest_data(user_id, favorites, lines):
    """Move guest favorites and cart lines into the user's rows.

    Each step commits on its own; a failure is logged and rolled back without
    undoing the login.
    """
    if favorites:
        try:
            merge_guest_favorites(user_id, favorites)
        except SQLAlchemyError:
            db.session.rollback()
            log.exception('Merging guest favorites failed for user %s', user_id)
    if lines:
        try:
            merged = merge_guest_cart(user_id, lines)
            log.info('Merged %d guest cart lines for user %s', merged, user_id)
        except SQLAlchemyError:
            db.session.rollback()
            log.exception('Merging guest cart failed for user %s', user_id)


@bp.post('/auth/register')
def register():
    data = read_body()
    username = str(data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password or not isinstance(password, str):
        return json_error('Username and password is required', 400)

    current = session_user()
    role = 'admin' if data.get('role') == 'admin' and current and current.get('role') == 'admin' else 'customer'

    if User.query.filter_by(username=username).first():
        return json_error('This username is already taken. Please try another one', 409)
    user = User(username=username, password_hash=generate_password_hash(password), role=role)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error('This username is already taken. Please try another one', 409)
    log.info('Registered user %s (%s)', username, role)
    return jsonify(id=user.id, username=user.username, role=user.role), 201


@bp.post('/auth/login')
def login():
    data = read_body()
    username = str(data.get('username') or '').strip()
    password = data.get('password') or ''
    user = User.query.filter_by(username=username).first() if username else None
    if not user or not isinstance(password, str) or not verify_password(user, password):
        log.info('Failed login for %r', username)
        return json_error('Wrong username or password', 401)

    favorites = guest_favorites()
    lines = guest_cart()

    # fresh session for the authenticated user
    session.clear()
    session.permanent = True
    session['user'] = user.to_session()

    merge_guest_data(user.id, favorites, lines)
    set_guest_favorites([])
    set_guest_cart([])

    log.info('User %s logged in', user.username)
    return jsonify(message='Logged in', user=session['user'])


@bp.post('/auth/logout')
def logout():
    session.clear()
    return jsonify(message='Signed out')


@bp.get('/auth/me')
def me():
    return jsonify(user=session_user())


@bp.put('/account/username')
@login_required
def change_username():
    username = read_body().get('username')
    if not isinstance(username, str) or len(username.strip()) < MIN_USERNAME_LENGTH:
        return json_error(f'Username must be at least {MIN_USERNAME_LENGTH} characters', 400)
    username = username.strip()
    user_id = session_user()['id']

    taken = User.query.filter_by(username=username).first()
    if taken and taken.id != user_id:
        return json_error('This username is already taken', 409)
    user = db.session.get(User, user_id)
    if not user:
        return json_error('Not logged in', 401)
    user.username = username
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error('This username is already taken', 409)

    session['user'] = user.to_session()
    return jsonify(message='Username updated', username=username)


@bp.put('/account/password')
@login_required
def change_password():
    data = read_body()
    current_password = data.get('currentPassword')
    new_password = data.get('newPassword')
    if not current_password or not new_password:
        return json_error('currentPassword and newPassword are required', 400)
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        return json_error(f'New password must be at least {MIN_PASSWORD_LENGTH} characters', 400)

    user = db.session.get(User, session_user()['id'])
    if not user:
        return json_error('Not logged in', 401)
    if not isinstance(current_password, str) or not verify_password(user, current_password):
        return json_error('Wrong current password', 401)

    user.password_hash = generate_password_hash(new_password)
    db.session.commit()
    return jsonify(message='Password updated')
