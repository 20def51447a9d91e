import logging
from collections import defaultdict
from datetime import date

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from .helpers import admin_required, json_error, parse_id
from .models import (BUYER_FIELDS, ORDER_STATUS_CREATED, Order, OrderItem, User, UserProfile, db,
                     money)

log = logging.getLogger(__name__)

bp = Blueprint('admin', __name__, url_prefix='/api/admin')


def _full_name(first, last):
    return func.coalesce(first, '') + ' ' + func.coalesce(last, '')


def customer_filter(text):
    like = f'%{text}%'
    return or_(
        _full_name(UserProfile.first_name, UserProfile.last_name).ilike(like),
        func.coalesce(UserProfile.email, '').ilike(like),
        func.coalesce(User.username, '').ilike(like),
        _full_name(Order.buyer_first_name, Order.buyer_last_name).ilike(like),
        func.coalesce(Order.buyer_email, '').ilike(like),
    )


def find_created_orders(date_from=None, date_to=None, customer=None, order_id=None):
    """Return created orders with their customer block and items, newest first.

    Items are fetched in one query for the whole filtered id set.
    """
    query = (db.session.query(Order, User.username, UserProfile)
             .outerjoin(User, User.id == Order.user_id)
             .outerjoin(UserProfile, UserProfile.user_id == Order.user_id)
             .filter(Order.status == ORDER_STATUS_CREATED))
    if order_id is not None:
        query = query.filter(Order.id == order_id)
    if date_from:
        query = query.filter(func.date(Order.created_at) >= date_from.isoformat())
    if date_to:
        query = query.filter(func.date(Order.created_at) <= date_to.isoformat())
    if customer:
        query = query.filter(customer_filter(customer))
    rows = query.order_by(Order.created_at.desc(), Order.id.desc()).all()
    if not rows:
        return []

    items = defaultdict(list)
    ids = [order.id for order, _, _ in rows]
    for it in OrderItem.query.filter(OrderItem.order_id.in_(ids)).order_by(OrderItem.id).all():
        items[it.order_id].append(it)

    result = []
    for order, username, profile in rows:
        stored = profile.fields() if profile else {}
        snapshot = order.buyer()
        customer_block = {'username': username}
        for key in BUYER_FIELDS:
            customer_block[key] = stored.get(key) or snapshot.get(key) or ''
        lines = items.get(order.id, [])
        result.append({
            'id': order.id,
            'userId': order.user_id,
            'status': order.status,
            'createdAt': order.created_at.isoformat(sep=' ', timespec='seconds'),
            'paymentMethod': order.payment_method,
            'customer': customer_block,
            'items': [it.to_dict() for it in lines],
            'total': money(sum(it.line_total for it in lines)),
        })
    return result


def _parse_day(name):
    value = request.args.get(name)
    if not value:
        return None, False
    try:
        return date.fromisoformat(value), False
    except ValueError:
        return None, True


@bp.get('/orders')
@admin_required
def list_orders():
    date_from, bad_from = _parse_day('from')
    date_to, bad_to = _parse_day('to')
    if bad_from or bad_to:
        return json_error('from/to must be dates (YYYY-MM-DD)', 400)
    customer = (request.args.get('customer') or '').strip()
    return jsonify(find_created_orders(date_from, date_to, customer or None))


@bp.get('/orders/<order_id>')
@admin_required
def get_order(order_id):
    oid = parse_id(order_id)
    if oid is None:
        return json_error('Invalid id', 400)
    found = find_created_orders(order_id=oid)
    if not found:
        return json_error('Order not found', 404)
    return jsonify(found[0])


@bp.delete('/orders/<order_id>')
@admin_required
def delete_order(order_id):
    oid = parse_id(order_id)
    if oid is None:
        return json_error('Invalid id', 400)
    order = db.session.get(Order, oid)
    if not order:
        return json_error('Order not found', 404)
    db.session.delete(order)
    db.session.commit()
    log.info('Deleted order %s', oid)
    return jsonify(message='Order deleted', id=oid)


@bp.get('/users')
@admin_required
def list_users():
    users = User.query.order_by(User.id).all()
    return jsonify([{'id': u.id, 'username': u.username, 'role': u.role} for u in users])
