import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from fleamarket.config import config_by_name
from fleamarket.errors import MarketplaceError
from fleamarket.extensions import db, migrate, login_manager, csrf, limiter
from fleamarket.gateways import init_gateways

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- External gateways (payment processor, carrier) ---
    init_gateways(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from fleamarket import models  # noqa: F401

    # --- Register blueprints ---
    from fleamarket.blueprints.auth import auth_bp
    from fleamarket.blueprints.payments import payments_bp
    from fleamarket.blueprints.webhooks import webhooks_bp
    from fleamarket.blueprints.shipping import shipping_bp
    from fleamarket.blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(shipping_bp)
    app.register_blueprint(admin_bp)

    # Exempt webhooks from CSRF: signature over the raw body authenticates them
    csrf.exempt(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(MarketplaceError)
    def marketplace_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({
            "error": e.description,
            "code": (e.name or "error").lower().replace(" ", "_"),
        }), e.code

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON API: nothing to load, nothing to embed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--password", default="demo1234", help="Password for every demo user")
    def seed_demo(password):
        """Create an admin, a seller, a buyer and two products.

        Usage:
            flask seed-demo
            flask seed-demo --password s3cret
        """
        from decimal import Decimal

        from fleamarket.models.product import Product
        from fleamarket.models.user import User

        def get_or_create_user(email, name, **fields):
            user = User.query.filter_by(email=email).first()
            if user:
                click.echo(f"User already exists: {email}")
                return user
            user = User(
                email=email,
                name=name,
                password_hash=generate_password_hash(password),
                **fields,
            )
            db.session.add(user)
            db.session.flush()
            click.echo(f"Created user: {email}")
            return user

        admin = get_or_create_user("admin@fleamarket.local", "Admin", is_admin=True)
        seller = get_or_create_user(
            "seller@fleamarket.local", "Demo Seller",
            phone="11999990000", document="12345678909",
            address_postal_code="01310100", location="São Paulo, SP",
        )
        buyer = get_or_create_user(
            "buyer@fleamarket.local", "Demo Buyer",
            phone="21999990000", document="98765432100",
            address_postal_code="20040020", location="Rio de Janeiro, RJ",
        )

        boxed = Product(
            seller_id=seller.id,
            title="Vintage record player",
            price=Decimal("350.00"),
            location=seller.location,
            shipping_weight=Decimal("4.500"),
            shipping_height=20,
            shipping_width=45,
            shipping_length=40,
        )
        pickup_only = Product(
            seller_id=seller.id,
            title="Wooden bookshelf",
            price=Decimal("180.00"),
            location=seller.location,
            local_pickup=True,
        )
        db.session.add_all([boxed, pickup_only])
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Admin:     {admin.email} / {password}")
        click.echo(f"  Seller:    {seller.email} / {password}")
        click.echo(f"  Buyer:     {buyer.email} / {password}")
        click.echo(f"  Products:  {boxed.id} (carrier), {pickup_only.id} (pickup)")
        click.echo("=" * 60)

    @app.cli.command("expire-checkouts")
    @click.option("--older-than-hours", type=int, default=None,
                  help="Age threshold (defaults to STALE_CHECKOUT_HOURS).")
    @click.option("--dry-run", is_flag=True, help="List what would expire without changing anything.")
    def expire_checkouts(older_than_hours, dry_run):
        """Mark pending checkouts nobody paid for as failed.

        Usage:
            flask expire-checkouts
            flask expire-checkouts --older-than-hours 72 --dry-run
        """
        from fleamarket.services.transaction_service import expire_stale_checkouts

        hours = older_than_hours or app.config["STALE_CHECKOUT_HOURS"]
        expired = expire_stale_checkouts(hours, dry_run=dry_run)

        verb = "Would expire" if dry_run else "Expired"
        click.echo(f"{verb} {len(expired)} checkout(s) older than {hours}h")
        for txn_id in expired:
            click.echo(f"  {txn_id}")
