from flask import Blueprint, jsonify

from .helpers import login_required, read_body, session_user
from .models import BUYER_FIELDS, UserProfile, db

bp = Blueprint('profile', __name__, url_prefix='/api/profile')


@bp.get('')
@login_required
def get_profile():
    profile = db.session.get(UserProfile, session_user()['id'])
    stored = profile.fields() if profile else {}
    return jsonify({key: stored.get(key) or '' for key in BUYER_FIELDS})


@bp.put('')
@login_required
def save_profile():
    user_id = session_user()['id']
    profile = db.session.get(UserProfile, user_id)
    if not profile:
        profile = UserProfile(user_id=user_id)
        db.session.add(profile)
    profile.update(read_body())
    db.session.commit()
    return jsonify(message='Profile saved')
