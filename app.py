import logging

import click
from flask import Flask, request, g, jsonify
from flask_migrate import Migrate

from config import Config
from routes import health_bp, auth_bp, slots_bp, reservations_bp, admin_bp, webhook_bp, contact_bp

from models import db
from reservations.errors import ReservationError
from utils.auth_context import load_current_user
from security.csrf import require_csrf

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(slots_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(contact_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    CSRF_EXEMPT_PATHS = {
        "/auth/login",
        "/health",
        "/webhooks/stripe",
    }

    @app.before_request
    def _csrf_protect():
        # Only protect state-changing requests
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.path in CSRF_EXEMPT_PATHS:
                return None

            # Bearer-token callers carry no ambient credentials
            if getattr(g, "user", None) is not None and getattr(g, "auth_via_cookie", False):
                failure = require_csrf()
                if failure:
                    return failure

    @app.errorhandler(ReservationError)
    def _reservation_error(exc):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.path, exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    if app.config.get("SWEEPER_ENABLED") and not app.config.get("TESTING"):
        from reservations.sweeper import start_scheduler
        app.extensions["expiry_sweeper"] = start_scheduler(app)

    return app

#-------------------------
from models.user import StaffUser
from security.password import hash_password


def register_cli(app):
    @app.cli.command("create-staff")
    @click.argument("email")
    @click.option("--name", "full_name", default=None, help="Display name for the staff member.")
    @click.password_option()
    def create_staff(email, full_name, password):
        """Create a staff account (bootstrap)."""
        email = email.strip().lower()
        if StaffUser.query.filter_by(email=email).first():
            click.echo("Staff user already exists")
            return

        user = StaffUser(email=email, full_name=full_name, password_hash=hash_password(password))
        db.session.add(user)
        db.session.commit()
        click.echo(f"{user.email} created")

    @app.cli.command("sweep-holds")
    def sweep_holds():
        """Run one expiry sweep now."""
        from reservations.sweeper import sweep

        result = sweep()
        click.echo(", ".join(f"{k}={v}" for k, v in result.to_dict().items()))

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
