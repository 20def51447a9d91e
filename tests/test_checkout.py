from storefront.models import Order, Product, db

from conftest import create_user, login


def test_checkout_without_cart_is_400(client, customer):
    resp = client.post('/api/orders/checkout', json={})
    assert resp.status_code == 400


def test_checkout_with_empty_cart_is_400(client, customer, make_product):
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    client.delete(f'/api/cart/{pid}')
    resp = client.post('/api/orders/checkout', json={})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Cart is empty'


def test_checkout_is_idempotent(app, client, customer, make_product):
    pid = make_product(price='7.00')
    client.put(f'/api/cart/{pid}', json={'quantity': 3})

    first = client.post('/api/orders/checkout', json={'paymentMethod': 'card'})
    assert first.status_code == 200
    order_id = first.get_json()['orderId']

    again = client.post('/api/orders/checkout', json={'paymentMethod': 'card'})
    assert again.status_code == 200
    assert again.get_json()['orderId'] == order_id

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.status == 'created'
        assert order.payment_method == 'card'
        assert order.total == 21.0

    assert client.get('/api/cart').get_json()['items'] == []


def test_checkout_buyer_snapshot_prefers_explicit_then_profile(app, client, customer, make_product):
    client.put('/api/profile', json={'firstName': 'Alice', 'lastName': 'Liddell',
                                     'email': 'alice@example.com', 'city': 'Oxford'})
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    resp = client.post('/api/orders/checkout', json={'email': 'other@example.com'})
    order_id = resp.get_json()['orderId']

    # later profile edits do not touch the order
    client.put('/api/profile', json={'firstName': 'Changed'})

    with app.app_context():
        buyer = db.session.get(Order, order_id).buyer()
    assert buyer['firstName'] == 'Alice'
    assert buyer['email'] == 'other@example.com'
    assert buyer['city'] == 'Oxford'
    assert buyer['postalCode'] is None


def test_line_totals_are_fixed_at_checkout(app, client, customer, make_product):
    pid = make_product(price='10.00')
    client.put(f'/api/cart/{pid}', json={'quantity': 2})
    client.post('/api/orders/checkout', json={})

    with app.app_context():
        db.session.get(Product, pid).price = 99
        db.session.commit()

    orders = client.get('/api/orders').get_json()
    assert len(orders) == 1
    item = orders[0]['items'][0]
    assert item['unitPrice'] == 10.0
    assert item['lineTotal'] == 20.0
    assert orders[0]['total'] == 20.0


def test_new_cart_after_checkout_gets_new_order(client, customer, make_product):
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    first = client.post('/api/orders/checkout', json={}).get_json()['orderId']
    client.post(f'/api/cart/{pid}')
    second = client.post('/api/orders/checkout', json={}).get_json()['orderId']
    assert first != second
    assert len(client.get('/api/orders').get_json()) == 2


def test_guest_checkout_creates_order_and_empties_cart(app, client, make_product):
    pid = make_product(price='5.00')
    client.put(f'/api/cart/{pid}', json={'quantity': 2})
    resp = client.post('/api/cart/guest/checkout', json={'firstName': 'Gus', 'email': 'gus@example.com',
                                                         'paymentMethod': 'invoice'})
    assert resp.status_code == 200
    order_id = resp.get_json()['orderId']

    with app.app_context():
        order = db.session.get(Order, order_id)
        assert order.user_id is None
        assert order.status == 'created'
        assert order.buyer_email == 'gus@example.com'
        assert [(i.product_name, i.quantity, float(i.line_total)) for i in order.items] == [('Runner', 2, 10.0)]
    assert client.get('/api/cart').get_json()['items'] == []


def test_guest_checkout_with_empty_cart_is_noop(app, client):
    resp = client.post('/api/cart/guest/checkout', json={})
    assert resp.status_code == 200
    assert 'orderId' not in resp.get_json()
    with app.app_context():
        assert Order.query.count() == 0


def test_guest_checkout_rejected_when_logged_in(client, customer):
    assert client.post('/api/cart/guest/checkout', json={}).status_code == 400


def test_guest_checkout_rolls_back_on_missing_product(app, client, make_product):
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    with client.session_transaction() as sess:
        sess['guestCart'] = sess['guestCart'] + [{'productId': 555, 'quantity': 1}]
    assert client.post('/api/cart/guest/checkout', json={}).status_code == 400
    with app.app_context():
        assert Order.query.count() == 0


def test_direct_order(client, customer, make_product):
    pid = make_product(price='2.50')
    assert client.post('/api/orders', json={'items': []}).status_code == 400
    assert client.post('/api/orders', json={'items': [{'productId': 999, 'quantity': 1}]}).status_code == 400
    assert client.post('/api/orders', json={'items': [{'productId': pid, 'quantity': 0}]}).status_code == 400

    resp = client.post('/api/orders', json={'items': [{'productId': pid, 'quantity': 4}]})
    assert resp.status_code == 201
    order = client.get(f"/api/orders/{resp.get_json()['orderId']}").get_json()
    assert order['total'] == 10.0


def test_orders_are_private(app, client, customer, make_product):
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    order_id = client.post('/api/orders/checkout', json={}).get_json()['orderId']
    client.post('/api/auth/logout')

    create_user(app, 'mallory')
    login(client, 'mallory')
    assert client.get(f'/api/orders/{order_id}').status_code == 404
    assert client.get('/api/orders').get_json() == []


def test_orders_require_login(client):
    assert client.post('/api/orders/checkout', json={}).status_code == 401
    assert client.get('/api/orders').status_code == 401


def test_direct_order_rejects_repeated_product(app, client, customer, make_product):
    pid = make_product()
    items = [{'productId': pid, 'quantity': 1}, {'productId': pid, 'quantity': 2}]
    resp = client.post('/api/orders', json={'items': items})
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid orderline'
    with app.app_context():
        assert Order.query.count() == 0


def test_order_total_has_no_float_drift(client, customer, make_product):
    a = make_product(name='A', price='0.10')
    b = make_product(name='B', price='0.20')
    items = [{'productId': a, 'quantity': 1}, {'productId': b, 'quantity': 1}]
    order_id = client.post('/api/orders', json={'items': items}).get_json()['orderId']
    assert client.get(f'/api/orders/{order_id}').get_json()['total'] == 0.3
