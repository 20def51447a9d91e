from flask import Blueprint, jsonify

from .helpers import (guest_cart, json_error, parse_id, parse_quantity, read_body,
                      session_user, set_guest_cart)
from .models import OrderItem, Product, db, find_cart_order, get_or_create_cart_order, money

bp = Blueprint('cart', __name__, url_prefix='/api/cart')


def _cart_item(product_id, name, price, quantity, line_total, product):
    return {
        'id': product_id,
        'name': name,
        'price': price,
        'quantity': quantity,
        'lineTotal': line_total,
        'image': product.image if product else None,
        'brand': product.brand if product else None,
    }


def cart_view(items, logged_in):
    """Serialize cart items; the total is summed in Decimal before converting."""
    total = sum(i['lineTotal'] for i in items)
    return {
        'loggedIn': logged_in,
        'items': [dict(i, price=money(i['price']), lineTotal=money(i['lineTotal'])) for i in items],
        'total': money(total),
    }


# ---- logged-in users: lines of the open cart order ----

def user_cart_items(user_id):
    order = find_cart_order(user_id)
    if not order:
        return []
    lines = OrderItem.query.filter_by(order_id=order.id).order_by(OrderItem.id.desc()).all()
    return [_cart_item(it.product_id, it.product_name, it.unit_price, it.quantity, it.line_total, it.product)
            for it in lines]


def _user_line(order, product_id):
    return OrderItem.query.filter_by(order_id=order.id, product_id=product_id).first()


def add_to_user_cart(user_id, product, quantity=1):
    """Add quantity to the user's line for product, creating the cart order and line as needed."""
    order = get_or_create_cart_order(user_id)
    line = _user_line(order, product.id)
    if line:
        line.snapshot(product, line.quantity + quantity)
    else:
        line = OrderItem(order_id=order.id, product_id=product.id)
        line.snapshot(product, quantity)
        db.session.add(line)
    return line


def set_user_cart_quantity(user_id, product, quantity):
    order = get_or_create_cart_order(user_id)
    line = _user_line(order, product.id)
    if not line:
        line = OrderItem(order_id=order.id, product_id=product.id)
        db.session.add(line)
    line.snapshot(product, quantity)
    return line


def remove_from_user_cart(user_id, product_id):
    order = find_cart_order(user_id)
    if order:
        OrderItem.query.filter_by(order_id=order.id, product_id=product_id).delete()


def merge_guest_cart(user_id, lines):
    """Fold guest cart lines into the user's cart order, summing quantities per product."""
    merged = 0
    for entry in lines:
        pid = parse_id(entry.get('productId'))
        quantity = parse_quantity(entry.get('quantity'))
        product = db.session.get(Product, pid) if pid is not None else None
        if not product or not quantity:
            continue
        add_to_user_cart(user_id, product, quantity)
        merged += 1
    db.session.commit()
    return merged


# ---- guests: a list of {productId, quantity} kept in the session ----

def guest_cart_items(lines):
    ids = list({entry['productId'] for entry in lines})
    if not ids:
        return []
    products = {p.id: p for p in Product.query.filter(Product.id.in_(ids)).all()}
    items = []
    for entry in lines:
        p = products.get(entry['productId'])
        if not p:
            continue
        items.append(_cart_item(p.id, p.name, p.price, entry['quantity'], p.price * entry['quantity'], p))
    return items


def add_to_guest_cart(lines, product_id):
    for entry in lines:
        if entry['productId'] == product_id:
            entry['quantity'] += 1
            return lines
    lines.append({'productId': product_id, 'quantity': 1})
    return lines


def set_guest_cart_quantity(lines, product_id, quantity):
    if quantity == 0:
        return remove_from_guest_cart(lines, product_id)
    for entry in lines:
        if entry['productId'] == product_id:
            entry['quantity'] = quantity
            return lines
    lines.append({'productId': product_id, 'quantity': quantity})
    return lines


def remove_from_guest_cart(lines, product_id):
    return [entry for entry in lines if entry['productId'] != product_id]


# ---- routes ----

@bp.get('')
def get_cart():
    user = session_user()
    if user:
        return jsonify(cart_view(user_cart_items(user['id']), True))
    return jsonify(cart_view(guest_cart_items(guest_cart()), False))


@bp.post('/<product_id>')
def add_item(product_id):
    pid = parse_id(product_id)
    if pid is None:
        return json_error('Invalid product-id', 400)
    product = db.session.get(Product, pid)
    if not product:
        return json_error('Product does not exist', 404)

    user = session_user()
    if user:
        add_to_user_cart(user['id'], product)
        db.session.commit()
        return jsonify(message='Added to cart (user)', productId=pid)
    set_guest_cart(add_to_guest_cart(guest_cart(), pid))
    return jsonify(message='Added to cart (guest)', productId=pid)


@bp.put('/<product_id>')
def update_item(product_id):
    pid = parse_id(product_id)
    qty = parse_quantity(read_body().get('quantity'))
    if pid is None or qty is None:
        return json_error('Invalid product-id/quantity', 400)

    user = session_user()
    if qty == 0:
        if user:
            remove_from_user_cart(user['id'], pid)
            db.session.commit()
            return jsonify(message='Removed item (user)', productId=pid)
        set_guest_cart(remove_from_guest_cart(guest_cart(), pid))
        return jsonify(message='Removed item (guest)', productId=pid)

    product = db.session.get(Product, pid)
    if not product:
        return json_error('Product does not exist', 404)
    if user:
        set_user_cart_quantity(user['id'], product, qty)
        db.session.commit()
        return jsonify(message='Updated item (user)', productId=pid, quantity=qty)
    set_guest_cart(set_guest_cart_quantity(guest_cart(), pid, qty))
    return jsonify(message='Updated item (guest)', productId=pid, quantity=qty)


@bp.delete('/<product_id>')
def remove_item(product_id):
    pid = parse_id(product_id)
    if pid is None:
        return json_error('Invalid product-id', 400)

    user = session_user()
    if user:
        remove_from_user_cart(user['id'], pid)
        db.session.commit()
        return jsonify(message='Removed from cart (user)', productId=pid)
    set_guest_cart(remove_from_guest_cart(guest_cart(), pid))
    return jsonify(message='Removed from cart (guest)', productId=pid)
