import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from .helpers import admin_required, json_error, parse_id, read_body
from .models import DEFAULT_CATEGORY, Category, HeroImage, Product, db, ensure_default_category

log = logging.getLogger(__name__)

bp = Blueprint('catalog', __name__, url_prefix='/api')

MAX_IMAGES = 4
MAX_PRICE = Decimal('99999999.99')


def parse_price(value):
    try:
        price = Decimal(str(value))
        if not price.is_finite() or price <= 0 or price > MAX_PRICE:
            return None
        return price.quantize(Decimal('0.01'))
    except (ValueError, InvalidOperation):
        return None


def parse_date(value):
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def parse_flag(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes')


def _is_default(category):
    return category.name.lower() == DEFAULT_CATEGORY.lower()


# ---- categories ----

@bp.get('/categories')
@admin_required
def list_categories():
    counts = dict(db.session.query(Product.category_id, func.count(Product.id))
                  .group_by(Product.category_id).all())
    cats = Category.query.order_by(Category.id).all()
    return jsonify([c.to_dict(product_count=counts.get(c.id, 0)) for c in cats])


@bp.get('/categories/public')
def list_public_categories():
    cats = (Category.query.filter(func.lower(Category.name) != DEFAULT_CATEGORY.lower())
            .order_by(Category.id).all())
    return jsonify([c.to_dict() for c in cats])


@bp.post('/categories')
@admin_required
def create_category():
    data = read_body()
    name = str(data.get('name') or '').strip()
    if not name:
        return json_error('name required', 400)
    if Category.query.filter_by(name=name).first():
        return json_error('Category already exists', 409)
    cat = Category(name=name, image_url=data.get('imageUrl') or None)
    db.session.add(cat)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error('Category already exists', 409)
    return jsonify(cat.to_dict(product_count=0)), 201


@bp.put('/categories/<category_id>')
@admin_required
def update_category(category_id):
    cid = parse_id(category_id)
    data = read_body()
    name = str(data.get('name') or '').strip()
    if not cid or not name:
        return json_error('Invalid input', 400)
    cat = db.session.get(Category, cid)
    if not cat:
        return json_error('Category not found', 404)
    clash = Category.query.filter_by(name=name).first()
    if clash and clash.id != cat.id:
        return json_error('Category already exists', 409)

    cat.name = name
    if 'imageUrl' in data:
        cat.image_url = data.get('imageUrl') or None
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error('Category already exists', 409)
    return jsonify(cat.to_dict())


@bp.delete('/categories/<category_id>')
@admin_required
def delete_category(category_id):
    cid = parse_id(category_id)
    if not cid:
        return json_error('Invalid id', 400)
    cat = db.session.get(Category, cid)
    if not cat:
        return json_error('Category not found', 404)
    if _is_default(cat):
        return json_error(f"Cannot delete '{DEFAULT_CATEGORY}' category", 400)

    count = Product.query.filter_by(category_id=cid).count()
    force = request.args.get('force', '').lower() == 'true'
    if count and not force:
        return json_error('Category has products', 409, productCount=count)

    if count:
        default_id = ensure_default_category()
        Product.query.filter_by(category_id=cid).update({'category_id': default_id}, synchronize_session='fetch')
    db.session.delete(cat)
    db.session.commit()
    log.info('Deleted category %s, moved %d products to %s', cid, count, DEFAULT_CATEGORY)
    return jsonify(message='Deleted', id=cid, movedProducts=count)


# ---- products ----

def product_fields(data, partial=False):
    """Validate a product body; returns (fields, error message)."""
    fields = {}
    if 'name' in data or not partial:
        name = str(data.get('name') or '').strip()
        if not name:
            return None, 'name is required'
        fields['name'] = name
    if 'price' in data or not partial:
        price = parse_price(data.get('price'))
        if price is None:
            return None, 'price must be a positive number'
        fields['price'] = price
    if 'categoryId' in data or not partial:
        cid = parse_id(data.get('categoryId'))
        if cid is None or not db.session.get(Category, cid):
            return None, 'categoryId must reference an existing category'
        fields['category_id'] = cid
    if 'publishingDate' in data or not partial:
        published = parse_date(data.get('publishingDate'))
        if published is None:
            return None, 'publishingDate must be an ISO date'
        fields['publishing_date'] = published
    if 'images' in data:
        images = data.get('images') or []
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            return None, 'images must be a list of URLs'
        images = [i for i in images if i]
        if len(images) > MAX_IMAGES:
            return None, f'at most {MAX_IMAGES} images are allowed'
        fields['images'] = images
    for key, column in (('brand', 'brand'), ('description', 'description')):
        if key in data:
            fields[column] = data.get(key) or None
    if 'trending' in data:
        fields['is_trending'] = parse_flag(data.get('trending'))
    return fields, None


@bp.get('/products')
def list_products():
    query = Product.query
    category = parse_id(request.args.get('category', ''))
    if category is not None:
        query = query.filter(Product.category_id == category)
    search = request.args.get('q')
    if search:
        query = query.filter(or_(Product.name.ilike(f'%{search}%'), Product.brand.ilike(f'%{search}%')))
    if 'trending' in request.args:
        query = query.filter(Product.is_trending == parse_flag(request.args['trending']))
    products = query.order_by(Product.id.desc()).all()
    return jsonify([p.to_dict() for p in products])


@bp.get('/products/<product_id>')
def get_product(product_id):
    pid = parse_id(product_id)
    p = db.session.get(Product, pid) if pid is not None else None
    if not p:
        return json_error('The product does not exist', 404)
    return jsonify(p.to_dict())


@bp.post('/products')
@admin_required
def create_product():
    fields, err = product_fields(read_body())
    if err:
        return json_error(err, 400)
    p = Product(**fields)
    db.session.add(p)
    db.session.commit()
    return jsonify(id=p.id), 201


@bp.put('/products/<product_id>')
@admin_required
def update_product(product_id):
    pid = parse_id(product_id)
    p = db.session.get(Product, pid) if pid is not None else None
    if not p:
        return json_error('The product does not exist', 404)
    fields, err = product_fields(read_body(), partial=True)
    if err:
        return json_error(err, 400)
    for key, value in fields.items():
        setattr(p, key, value)
    db.session.commit()
    return jsonify(message='Updated', product=p.to_dict())


@bp.delete('/products/<product_id>')
@admin_required
def delete_product(product_id):
    pid = parse_id(product_id)
    p = db.session.get(Product, pid) if pid is not None else None
    if not p:
        return json_error('The product does not exist', 404)
    db.session.delete(p)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return json_error('Product is referenced by orders', 409)
    return jsonify(message='Deleted', id=pid)


# ---- hero images ----

@bp.get('/hero-images')
def list_hero_images():
    return jsonify([h.to_dict() for h in HeroImage.query.order_by(HeroImage.id).all()])


@bp.post('/hero-images')
@admin_required
def create_hero_image():
    image_url = read_body().get('imageUrl')
    if not image_url:
        return json_error('imageUrl is required', 400)
    hero = HeroImage(image_url=image_url)
    db.session.add(hero)
    db.session.commit()
    return jsonify(hero.to_dict()), 201


@bp.put('/hero-images/<hero_id>')
@admin_required
def update_hero_image(hero_id):
    image_url = read_body().get('imageUrl')
    if not image_url:
        return json_error('imageUrl is required', 400)
    hid = parse_id(hero_id)
    hero = db.session.get(HeroImage, hid) if hid is not None else None
    if not hero:
        return json_error('Could not find hero-image', 404)
    hero.image_url = image_url
    db.session.commit()
    return jsonify(message='Updated', **hero.to_dict())
