import click
from flask import Flask, request, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from werkzeug.security import generate_password_hash

from config import Config
from qistmarket.models import db, Role, User, ROLE_SUPER_ADMIN, seed_roles
from qistmarket.schemas import ma
from qistmarket.logger_config import app_logger, access_logger
from qistmarket.error_handler import register_error_handlers
from qistmarket.notifications import PushNotifier

# Initialize extensions (without app binding)
limiter = Limiter(key_func=get_remote_address)


def create_app(config_class=Config):
    """
    Flask application factory
    """
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    ma.init_app(app)
    limiter.init_app(app)

    # Pure JSON API: nothing may be framed or load third-party content
    csp = {
        "default-src": "'self'",
        "img-src": ["'self'", "data:", "https:"],
        "frame-ancestors": "'none'",
    }
    Talisman(
        app,
        content_security_policy=csp,
        force_https=False,
        session_cookie_secure=app.config.get("SESSION_COOKIE_SECURE", False),
    )

    # Explicit origins are required because the web dashboard sends its cookie
    CORS(app, supports_credentials=True, origins=app.config.get('ALLOWED_ORIGINS', []))

    app.extensions['qist_notifier'] = PushNotifier.from_config(app.config)

    from qistmarket.routes import auth_routes, user_routes, orders_routes, verification_routes, health

    app.register_blueprint(health.bp, url_prefix="/api")
    app.register_blueprint(auth_routes.bp, url_prefix="/api")
    app.register_blueprint(user_routes.bp, url_prefix="/api")
    app.register_blueprint(orders_routes.bp, url_prefix="/api")
    app.register_blueprint(verification_routes.bp, url_prefix="/api")

    @app.route('/uploads/<path:filename>')
    def uploaded_file(filename):
        """Serve stored verification files"""
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename)

    # Register handlers
    register_error_handlers(app, db)
    register_request_handlers(app)
    register_cli(app)

    # Startup logs
    app_logger.info("Flask application initialized successfully")
    app_logger.info(f"Environment: {app.config.get('ENV')}")
    app_logger.info(f"Debug mode: {app.config.get('DEBUG')}")

    return app


def register_request_handlers(app):
    """
    Register before/after request handlers
    """

    @app.before_request
    def log_request():
        if request.path.startswith("/api/"):
            access_logger.info(
                f"{request.remote_addr} - {request.method} {request.path}"
            )

    @app.after_request
    def log_response(response):
        if request.path.startswith("/api/"):
            access_logger.info(
                f"{request.method} {request.path} - {response.status_code}"
            )

        # Security headers
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        return response


def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-roles")
    def seed_roles_command():
        """Insert the default roles."""
        created = seed_roles(db.session)
        click.echo(f"Roles seeded ({created} created).")

    @app.cli.command("create-admin")
    @click.option("--username", prompt=True)
    @click.option("--full-name", prompt=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin(username, full_name, password):
        """Create a Super Admin account."""
        role = Role.query.filter_by(name=ROLE_SUPER_ADMIN).first()
        if role is None:
            seed_roles(db.session)
            role = Role.query.filter_by(name=ROLE_SUPER_ADMIN).first()
        if User.query.filter_by(username=username).first():
            click.echo(f"User {username} already exists.")
            return

        db.session.add(User(
            full_name=full_name,
            username=username,
            password_hash=generate_password_hash(password),
            role_id=role.id,
        ))
        db.session.commit()
        click.echo(f"Super Admin {username} created.")

    @app.cli.command("auto-assign")
    def auto_assign():
        """Distribute new unassigned orders among active officers."""
        from qistmarket.services.orders import OrderLifecycleEngine

        notifier = app.extensions.get('qist_notifier')
        engine = OrderLifecycleEngine(db.session, notifier=notifier)
        result = engine.auto_assign()
        # Pushes run on daemon threads that would die with this process
        if notifier is not None:
            notifier.flush()
        click.echo(f"assigned={len(result['assigned'])} skipped={len(result['skipped'])}")
