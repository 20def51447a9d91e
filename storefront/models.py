import sqlite3
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine

db = SQLAlchemy()

ORDER_STATUS_CART = 'cart'
ORDER_STATUS_CREATED = 'created'

DEFAULT_CATEGORY = 'Uncategorized'
SEED_CATEGORIES = ['Shoes', 'Clothes', 'Bags', 'Watches', 'Sunglasses']

BUYER_FIELDS = ['firstName', 'lastName', 'email', 'mobilePhone', 'address', 'city', 'postalCode']
BUYER_COLUMNS = ['buyer_first_name', 'buyer_last_name', 'buyer_email', 'buyer_mobile_phone',
                 'buyer_address', 'buyer_city', 'buyer_postal_code']
PROFILE_COLUMNS = ['first_name', 'last_name', 'email', 'mobile_phone', 'address', 'city', 'postal_code']


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def money(value):
    return float(value) if value is not None else 0.0


class User(db.Model):
    __tablename__ = 'users'
    __table_args__ = (db.CheckConstraint("role IN ('customer', 'admin')", name='ck_users_role'),)
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='customer')
    profile = db.relationship('UserProfile', backref='user', uselist=False, lazy=True,
                              passive_deletes=True)

    def to_session(self):
        return {'id': self.id, 'username': self.username, 'role': self.role}


class Category(db.Model):
    __tablename__ = 'categories'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), unique=True, nullable=False)
    image_url = db.Column(db.String(255), nullable=True)

    def to_dict(self, product_count=None):
        d = {'id': self.id, 'name': self.name, 'imageUrl': self.image_url}
        if product_count is not None:
            d['productCount'] = product_count
        return d


class Product(db.Model):
    __tablename__ = 'products'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    image = db.Column(db.String(255), nullable=True)
    secondary_image1 = db.Column(db.String(255), nullable=True)
    secondary_image2 = db.Column(db.String(255), nullable=True)
    secondary_image3 = db.Column(db.String(255), nullable=True)
    brand = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)
    is_trending = db.Column(db.Boolean, nullable=False, default=False)
    category_id = db.Column(db.Integer, db.ForeignKey('categories.id', ondelete='RESTRICT'), nullable=False)
    publishing_date = db.Column(db.Date, nullable=False)
    category = db.relationship('Category', backref=db.backref('products', lazy=True, passive_deletes='all'))

    @property
    def images(self):
        return [i for i in (self.image, self.secondary_image1, self.secondary_image2, self.secondary_image3) if i]

    @images.setter
    def images(self, urls):
        urls = list(urls) + [None] * (4 - len(urls))
        self.image, self.secondary_image1, self.secondary_image2, self.secondary_image3 = urls[:4]

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'price': money(self.price),
            'image': self.image,
            'images': self.images,
            'brand': self.brand,
            'description': self.description,
            'trending': bool(self.is_trending),
            'categoryId': self.category_id,
            'categoryName': self.category.name if self.category else None,
            'publishingDate': self.publishing_date.isoformat() if self.publishing_date else None,
        }


class Favorite(db.Model):
    __tablename__ = 'favorites'
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'), primary_key=True)
    product = db.relationship('Product')


class Order(db.Model):
    __tablename__ = 'orders'
    __table_args__ = (
        db.Index('idx_orders_status_created_at', 'status', 'created_at'),
        db.Index('idx_orders_user_id_status', 'user_id', 'status'),
    )
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=True)
    status = db.Column(db.String(20), nullable=False, default=ORDER_STATUS_CREATED)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    payment_method = db.Column(db.String(50), nullable=True)
    buyer_first_name = db.Column(db.String(120), nullable=True)
    buyer_last_name = db.Column(db.String(120), nullable=True)
    buyer_email = db.Column(db.String(255), nullable=True)
    buyer_mobile_phone = db.Column(db.String(50), nullable=True)
    buyer_address = db.Column(db.String(255), nullable=True)
    buyer_city = db.Column(db.String(120), nullable=True)
    buyer_postal_code = db.Column(db.String(20), nullable=True)
    user = db.relationship('User', backref=db.backref('orders', lazy=True, passive_deletes=True))
    items = db.relationship('OrderItem', backref='order', lazy=True,
                            cascade='all, delete-orphan', order_by='OrderItem.id')

    def set_buyer(self, buyer):
        """Copy a {firstName, lastName, ...} mapping onto the snapshot columns, keeping existing values for None."""
        for key, column in zip(BUYER_FIELDS, BUYER_COLUMNS):
            value = buyer.get(key)
            if value is not None:
                setattr(self, column, value)

    def buyer(self):
        return {key: getattr(self, column) for key, column in zip(BUYER_FIELDS, BUYER_COLUMNS)}

    @property
    def total(self):
        return sum(i.line_total for i in self.items)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'status': self.status,
            'createdAt': self.created_at.isoformat(sep=' ', timespec='seconds'),
            'paymentMethod': self.payment_method,
            'buyer': self.buyer(),
            'items': [i.to_dict() for i in self.items],
            'total': money(self.total),
        }


class OrderItem(db.Model):
    __tablename__ = 'order_items'
    __table_args__ = (
        db.UniqueConstraint('order_id', 'product_id', name='ux_order_items_order_product'),
        db.CheckConstraint('quantity > 0', name='ck_order_items_quantity'),
    )
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    product_name = db.Column(db.String(200), nullable=True)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)
    product = db.relationship('Product')

    def snapshot(self, product, quantity):
        """Set quantity and re-copy the product's current name and price onto the line."""
        self.quantity = quantity
        self.unit_price = product.price
        self.product_name = product.name
        self.line_total = product.price * quantity

    def to_dict(self):
        return {
            'productId': self.product_id,
            'productName': self.product_name,
            'unitPrice': money(self.unit_price),
            'quantity': self.quantity,
            'lineTotal': money(self.line_total),
            'image': self.product.image if self.product else None,
        }


class UserProfile(db.Model):
    __tablename__ = 'user_profiles'
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    mobile_phone = db.Column(db.String(50), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(120), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def fields(self):
        return {key: getattr(self, column) for key, column in zip(BUYER_FIELDS, PROFILE_COLUMNS)}

    def update(self, data):
        for key, column in zip(BUYER_FIELDS, PROFILE_COLUMNS):
            setattr(self, column, data.get(key))


class HeroImage(db.Model):
    __tablename__ = 'hero_images'
    id = db.Column(db.Integer, primary_key=True)
    image_url = db.Column(db.String(255), nullable=False)

    def to_dict(self):
        return {'id': self.id, 'imageUrl': self.image_url}


def seed_categories():
    if Category.query.count() == 0:
        for name in SEED_CATEGORIES:
            db.session.add(Category(name=name))
        db.session.commit()


def ensure_default_category():
    """Return the id of the "Uncategorized" category, creating it if needed."""
    cat = Category.query.filter_by(name=DEFAULT_CATEGORY).first()
    if cat:
        return cat.id
    cat = Category(name=DEFAULT_CATEGORY)
    db.session.add(cat)
    db.session.flush()
    return cat.id


def find_cart_order(user_id):
    return Order.query.filter_by(user_id=user_id, status=ORDER_STATUS_CART).first()


def get_or_create_cart_order(user_id):
    # lookup-then-insert; two concurrent first writes for one user can both insert
    order = find_cart_order(user_id)
    if order:
        return order
    order = Order(user_id=user_id, status=ORDER_STATUS_CART)
    db.session.add(order)
    db.session.flush()
    return order
