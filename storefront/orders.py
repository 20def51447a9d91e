import logging

from flask import Blueprint, jsonify

from .helpers import (guest_cart, json_error, login_required, parse_id, parse_quantity,
                      read_body, session_user, set_guest_cart)
from .models import (BUYER_FIELDS, ORDER_STATUS_CREATED, Order, OrderItem, Product, UserProfile,
                     db, find_cart_order, utcnow)

log = logging.getLogger(__name__)

bp = Blueprint('orders', __name__, url_prefix='/api')


class CheckoutError(ValueError):
    pass


def buyer_details(body, profile=None):
    """Explicit request fields win over the stored profile; anything missing in both stays None."""
    stored = profile.fields() if profile else {}
    details = {}
    for key in BUYER_FIELDS:
        value = body.get(key)
        details[key] = value if value is not None else stored.get(key)
    return details


def add_order_lines(order, lines):
    """Price each {productId, quantity} line from the product table and attach it to order."""
    seen = set()
    for entry in lines:
        pid = parse_id(entry.get('productId'))
        qty = parse_quantity(entry.get('quantity'))
        if not pid or not qty or pid in seen:
            raise CheckoutError('Invalid orderline')
        seen.add(pid)
        product = db.session.get(Product, pid)
        if not product:
            raise CheckoutError(f'Product {pid} does not exist')
        line = OrderItem(product_id=product.id)
        line.snapshot(product, qty)
        order.items.append(line)


def checkout_cart(user_id, body):
    """Turn the user's cart order into a created order.

    Returns (order, created). When there is no open cart the most recent
    created order is returned with created=False, so repeated calls are
    idempotent; (None, False) means there is nothing to return.
    """
    cart = find_cart_order(user_id)
    if not cart:
        recent = (Order.query.filter_by(user_id=user_id, status=ORDER_STATUS_CREATED)
                  .order_by(Order.created_at.desc(), Order.id.desc()).first())
        return recent, False
    if not cart.items:
        raise CheckoutError('Cart is empty')

    cart.status = ORDER_STATUS_CREATED
    cart.created_at = utcnow()
    if body.get('paymentMethod') is not None:
        cart.payment_method = body['paymentMethod']
    cart.set_buyer(buyer_details(body, db.session.get(UserProfile, user_id)))
    db.session.commit()
    return cart, True


def place_order(user_id, lines, body):
    """Create a created order directly from {productId, quantity} lines."""
    order = Order(user_id=user_id, status=ORDER_STATUS_CREATED, created_at=utcnow(),
                  payment_method=body.get('paymentMethod'))
    order.set_buyer(buyer_details(body))
    add_order_lines(order, lines)
    db.session.add(order)
    db.session.commit()
    return order


@bp.post('/orders/checkout')
@login_required
def checkout():
    user_id = session_user()['id']
    try:
        order, created = checkout_cart(user_id, read_body())
    except CheckoutError as e:
        return json_error(str(e), 400)
    if not order:
        return json_error('No cart to checkout', 400)
    if not created:
        return jsonify(orderId=order.id, message='Order already created')
    log.info('User %s checked out order %s (%.2f)', user_id, order.id, order.total)
    return jsonify(orderId=order.id, message='Order created')


@bp.post('/cart/guest/checkout')
def guest_checkout():
    if session_user():
        return json_error('Already logged in; use /api/orders/checkout', 400)
    lines = guest_cart()
    if not lines:
        return jsonify(message='Guest cart is already empty')

    try:
        order = place_order(None, lines, read_body())
    except CheckoutError as e:
        log.warning('Guest checkout failed: %s', e)
        return json_error(str(e), 400)
    set_guest_cart([])
    log.info('Guest checked out order %s (%.2f)', order.id, order.total)
    return jsonify(orderId=order.id, message='Order created (guest)')


@bp.post('/orders')
@login_required
def create_order():
    body = read_body()
    items = body.get('items')
    if not isinstance(items, list) or not items or not all(isinstance(i, dict) for i in items):
        return json_error('items required', 400)
    try:
        order = place_order(session_user()['id'], items, body)
    except CheckoutError as e:
        return json_error(str(e), 400)
    return jsonify(orderId=order.id), 201


@bp.get('/orders')
@login_required
def my_orders():
    orders = (Order.query.filter_by(user_id=session_user()['id'], status=ORDER_STATUS_CREATED)
              .order_by(Order.created_at.desc(), Order.id.desc()).all())
    return jsonify([o.to_dict() for o in orders])


@bp.get('/orders/<order_id>')
@login_required
def order_detail(order_id):
    oid = parse_id(order_id)
    order = (Order.query.filter_by(id=oid, user_id=session_user()['id']).first()
             if oid is not None else None)
    if not order:
        return json_error('The order does not exist', 404)
    return jsonify(order.to_dict())
