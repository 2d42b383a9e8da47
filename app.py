import logging

from flask import Flask, jsonify
from flask_migrate import Migrate

from config import Config
from engine.errors import EngineError
from engine.policy import BookingPolicy
from models import db
from routes import ALL_BLUEPRINTS
from utils.audit import connect_audit_trail

logger = logging.getLogger(__name__)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Register routes
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Pricing and cancellation rules read one policy object
    app.extensions["booking_policy"] = BookingPolicy.from_config(app.config)

    # Every engine event lands in the audit log
    connect_audit_trail()

    @app.errorhandler(EngineError)
    def _engine_error(exc: EngineError):
        if exc.http_status >= 500:
            logger.warning("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.http_status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click


def register_cli(app):
    @app.cli.command("issue-code")
    @click.argument("owner_email")
    @click.option("--type", "code_type", type=click.Choice(["referral", "prize"]), default="prize")
    @click.option(
        "--effect",
        type=click.Choice(["discount_percentage", "free_item", "free_consultation"]),
        default="discount_percentage",
    )
    @click.option("--value", type=int, default=None, help="Percentage for discount codes.")
    @click.option("--item", default=None, help="Line item name for free_item codes.")
    @click.option("--label", default=None)
    @click.option("--ttl-days", type=int, default=None)
    def issue_code(owner_email, code_type, effect, value, item, label, ttl_days):
        """Mint a redeemable code for OWNER_EMAIL (support and promotions)."""
        from engine.bookings import BookingEngine
        from engine.errors import EngineError

        try:
            record = BookingEngine.from_app().issue_code(
                owner_email, code_type, effect, value=value, item=item, label=label, ttl_days=ttl_days
            )
        except EngineError as exc:
            raise click.ClickException(exc.message)

        click.echo(f"{record.code} issued to {record.owner_identity}")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
