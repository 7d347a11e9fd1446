from flask import Flask
from config import Config
from routes import console_bp

from models import db
from flask_migrate import Migrate
from security.credentials import CredentialValidator
from security.login_gate import GateRegistry
from security.policy import GatePolicy
from utils.geolocation import GeolocationResolver
from utils.audit import session_end_auditor


def create_app(config_class=Config, **overrides):
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config.update(overrides)

    # Register routes
    app.register_blueprint(console_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            db.create_all()

    # One login gate per console tab, all sharing the validator/resolver
    app.extensions["admin_console"] = GateRegistry(
        app,
        validator=CredentialValidator(),
        resolver=GeolocationResolver.from_config(app.config),
        policy=GatePolicy.from_config(app.config),
        on_session_end=session_end_auditor(app),
    )

    @app.get("/health")
    def health():
        return {"status": "ok"}, 200

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Cache-Control"] = "no-store"
        # pages carry one inline style block and one inline script
        resp.headers["Content-Security-Policy"] = (
            "default-src 'self'; style-src 'unsafe-inline'; script-src 'unsafe-inline'; "
            "frame-ancestors 'none';"
        )
        return resp


    register_cli(app)


    return app

#-------------------------
import click
from security.session_store import SessionRepository
from security.state import utcnow
from utils.seed import upsert_admin
from utils.storage import DatabaseStorage, list_namespaces

def register_cli(app):
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("password")
    @click.option("--name", default=None, help="Display name")
    def create_admin(email, password, name):
        """Create an admin user, or promote and reset an existing one."""
        user = upsert_admin(email, password=password, full_name=name, is_admin=True)
        click.echo(f"{user.email} is now an admin")

    @app.cli.command("set-admin")
    @click.argument("email")
    @click.option("--revoke", is_flag=True, help="Remove the admin flag instead")
    def set_admin(email, revoke):
        """Grant or revoke the admin flag of an existing user."""
        try:
            user = upsert_admin(email, is_admin=not revoke)
        except ValueError:
            click.echo("User not found")
            return
        click.echo(f"{user.email} admin={user.is_admin}")

    @app.cli.command("purge-sessions")
    def purge_sessions():
        """Drop expired admin sessions from every stored roster."""
        timeout = app.config.get("ADMIN_SESSION_TIMEOUT_SECONDS", 1800)
        total = 0
        for namespace in list_namespaces(app):
            repository = SessionRepository(DatabaseStorage(app, namespace))
            total += len(repository.purge_expired(utcnow(), timeout))
        click.echo(f"Removed {total} expired sessions")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
