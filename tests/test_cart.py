from storefront.models import Order, OrderItem, Product, db


def test_guest_add_twice_increments_quantity(client, make_product):
    pid = make_product(price='12.50')
    client.post(f'/api/cart/{pid}')
    client.post(f'/api/cart/{pid}')

    body = client.get('/api/cart').get_json()
    assert body['loggedIn'] is False
    assert len(body['items']) == 1
    item = body['items'][0]
    assert item['id'] == pid
    assert item['name'] == 'Runner'
    assert item['quantity'] == 2
    assert item['lineTotal'] == 25.0
    assert item['image'] == '/img/runner.png'
    assert body['total'] == 25.0


def test_user_add_twice_increments_quantity(app, client, customer, make_product):
    pid = make_product(price='3.00')
    client.post(f'/api/cart/{pid}')
    client.post(f'/api/cart/{pid}')

    body = client.get('/api/cart').get_json()
    assert body['loggedIn'] is True
    assert [(i['id'], i['quantity'], i['lineTotal']) for i in body['items']] == [(pid, 2, 6.0)]
    with app.app_context():
        assert OrderItem.query.count() == 1
        assert Order.query.filter_by(user_id=customer, status='cart').count() == 1


def test_reading_cart_does_not_create_cart_order(app, client, customer):
    body = client.get('/api/cart').get_json()
    assert body == {'loggedIn': True, 'items': [], 'total': 0}
    with app.app_context():
        assert Order.query.count() == 0


def test_set_quantity_and_zero_removes(client, customer, make_product):
    a = make_product(name='A', price='2.00')
    b = make_product(name='B', price='5.00')
    assert client.put(f'/api/cart/{a}', json={'quantity': 4}).status_code == 200
    client.post(f'/api/cart/{b}')

    body = client.get('/api/cart').get_json()
    assert body['total'] == 13.0

    resp = client.put(f'/api/cart/{a}', json={'quantity': 0})
    assert resp.status_code == 200
    body = client.get('/api/cart').get_json()
    assert [i['id'] for i in body['items']] == [b]


def test_guest_set_quantity_zero_removes(client, make_product):
    pid = make_product()
    client.put(f'/api/cart/{pid}', json={'quantity': 3})
    assert client.get('/api/cart').get_json()['items'][0]['quantity'] == 3
    client.put(f'/api/cart/{pid}', json={'quantity': 0})
    assert client.get('/api/cart').get_json()['items'] == []


def test_remove_missing_line_is_noop(client, customer, make_product):
    pid = make_product()
    resp = client.delete(f'/api/cart/{pid}')
    assert resp.status_code == 200
    resp = client.delete('/api/cart/9999')
    assert resp.status_code == 200


def test_guest_remove(client, make_product):
    pid = make_product()
    client.post(f'/api/cart/{pid}')
    assert client.delete(f'/api/cart/{pid}').status_code == 200
    assert client.get('/api/cart').get_json()['items'] == []


def test_invalid_ids_and_quantities(client, make_product):
    pid = make_product()
    assert client.post('/api/cart/abc').status_code == 400
    assert client.delete('/api/cart/abc').status_code == 400
    assert client.put(f'/api/cart/{pid}', json={'quantity': -1}).status_code == 400
    assert client.put(f'/api/cart/{pid}', json={'quantity': 'lots'}).status_code == 400
    assert client.put(f'/api/cart/{pid}', json={}).status_code == 400


def test_unknown_product_is_404(client, customer):
    assert client.post('/api/cart/424242').status_code == 404
    assert client.put('/api/cart/424242', json={'quantity': 2}).status_code == 404
    assert client.post('/api/cart/424242').get_json()['error']


def test_user_cart_keeps_snapshot_price(app, client, customer, make_product):
    pid = make_product(price='10.00')
    client.post(f'/api/cart/{pid}')

    with app.app_context():
        p = db.session.get(Product, pid)
        p.price = 99
        db.session.commit()

    item = client.get('/api/cart').get_json()['items'][0]
    assert item['price'] == 10.0
    # the next write re-snapshots the line at the current price
    client.post(f'/api/cart/{pid}')
    item = client.get('/api/cart').get_json()['items'][0]
    assert item['price'] == 99.0
    assert item['lineTotal'] == 198.0


def test_cart_total_has_no_float_drift(client, customer, make_product):
    client.post(f"/api/cart/{make_product(name='A', price='0.10')}")
    client.post(f"/api/cart/{make_product(name='B', price='0.20')}")
    assert client.get('/api/cart').get_json()['total'] == 0.3
