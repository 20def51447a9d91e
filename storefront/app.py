import logging
import os
from datetime import timedelta

import click
from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from .models import User, db, seed_categories

load_dotenv()

log = logging.getLogger('storefront')


def configure_logging(level):
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        log.addHandler(handler)
    log.setLevel(level)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config['SQLALCHEMY_DATABASE_URI'] = os.getenv('DATABASE_URL', 'sqlite:///storefront.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['SECRET_KEY'] = os.getenv('SECRET_KEY', 'devsecret')
    app.config['SESSION_COOKIE_HTTPONLY'] = True
    app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
    app.config['SESSION_COOKIE_SECURE'] = os.getenv('SESSION_COOKIE_SECURE', '').lower() == 'true'
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=7)
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO').upper()
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config['LOG_LEVEL'])
    db.init_app(app)

    from . import admin, auth, cart, catalog, favorites, orders, profile
    for module in (auth, catalog, favorites, cart, orders, admin, profile):
        app.register_blueprint(module.bp)

    register_error_handlers(app)
    register_commands(app)

    with app.app_context():
        db.create_all()
        seed_categories()

    return app


def register_error_handlers(app):
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify(error=e.description), e.code

    @app.errorhandler(Exception)
    def unhandled_error(e):
        db.session.rollback()
        log.exception('Unhandled error')
        return jsonify(error='Internal server error'), 500


def register_commands(app):
    @app.cli.command('init-db')
    def init_db():
        """Create tables and seed the default categories."""
        db.create_all()
        seed_categories()
        click.echo('Database initialised.')

    @app.cli.command('create-admin')
    @click.argument('username')
    @click.argument('password')
    def create_admin(username, password):
        """Create an admin user, or promote an existing one and reset its password."""
        user = User.query.filter_by(username=username).first()
        if user:
            user.role = 'admin'
            user.password_hash = generate_password_hash(password)
        else:
            user = User(username=username, password_hash=generate_password_hash(password), role='admin')
            db.session.add(user)
        db.session.commit()
        click.echo(f'Admin {username} ready.')


if __name__ == '__main__':
    create_app().run(debug=True)
