from datetime import date
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from storefront import create_app
from storefront.models import Category, Product, User, db


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SECRET_KEY': 'test-secret',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def create_user(app, username, password='secret1', role='customer'):
    with app.app_context():
        user = User(username=username, password_hash=generate_password_hash(password), role=role)
        db.session.add(user)
        db.session.commit()
        return user.id


def login(client, username, password='secret1'):
    return client.post('/api/auth/login', json={'username': username, 'password': password})


@pytest.fixture
def make_product(app):
    def _make(name='Runner', price='10.00', category='Shoes', brand='Acme', image='/img/runner.png'):
        with app.app_context():
            cat = Category.query.filter_by(name=category).first()
            if not cat:
                cat = Category(name=category)
                db.session.add(cat)
                db.session.flush()
            p = Product(name=name, price=Decimal(price), category_id=cat.id, brand=brand,
                        image=image, publishing_date=date(2024, 1, 1))
            db.session.add(p)
            db.session.commit()
            return p.id
    return _make


@pytest.fixture
def customer(app, client):
    user_id = create_user(app, 'alice')
    assert login(client, 'alice').status_code == 200
    return user_id


@pytest.fixture
def admin(app, client):
    user_id = create_user(app, 'root', role='admin')
    assert login(client, 'root').status_code == 200
    return user_id
