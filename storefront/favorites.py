from flask import Blueprint, jsonify

from .helpers import guest_favorites, json_error, parse_id, session_user, set_guest_favorites
from .models import Favorite, Product, db

bp = Blueprint('favorites', __name__, url_prefix='/api/favorites')


def user_favorites(user_id):
    return (Product.query.join(Favorite, Favorite.product_id == Product.id)
            .filter(Favorite.user_id == user_id)
            .order_by(Product.id.desc()).all())


def add_user_favorite(user_id, product_id):
    if not db.session.get(Favorite, (user_id, product_id)):
        db.session.add(Favorite(user_id=user_id, product_id=product_id))


def merge_guest_favorites(user_id, product_ids):
    """Insert guest favorites for user_id, skipping duplicates and products that no longer exist."""
    existing = {p.id for p in Product.query.filter(Product.id.in_(product_ids)).all()} if product_ids else set()
    for pid in dict.fromkeys(product_ids):
        if pid in existing:
            add_user_favorite(user_id, pid)
    db.session.commit()


@bp.get('')
def list_favorites():
    user = session_user()
    if user:
        return jsonify(loggedIn=True, items=[p.to_dict() for p in user_favorites(user['id'])])
    ids = guest_favorites()
    if not ids:
        return jsonify(loggedIn=False, items=[])
    products = Product.query.filter(Product.id.in_(ids)).all()
    return jsonify(loggedIn=False, items=[p.to_dict() for p in products])


@bp.post('/<product_id>')
def add_favorite(product_id):
    pid = parse_id(product_id)
    if pid is None:
        return json_error('Invalid product-id', 400)
    if not db.session.get(Product, pid):
        return json_error('Product does not exist', 404)

    user = session_user()
    if user:
        add_user_favorite(user['id'], pid)
        db.session.commit()
        return jsonify(message='Added to favorites (user)', productId=pid)
    ids = guest_favorites()
    if pid not in ids:
        ids.append(pid)
    set_guest_favorites(ids)
    return jsonify(message='Added to favorites (guest)', productId=pid)


@bp.delete('/<product_id>')
def remove_favorite(product_id):
    pid = parse_id(product_id)
    if pid is None:
        return json_error('Invalid product-id', 400)

    user = session_user()
    if user:
        Favorite.query.filter_by(user_id=user['id'], product_id=pid).delete()
        db.session.commit()
        return jsonify(message='Removed from favorites (user)', productId=pid)
    set_guest_favorites([i for i in guest_favorites() if i != pid])
    return jsonify(message='Removed from favorites (guest)', productId=pid)
