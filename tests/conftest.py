import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

# Must be set before config is imported
os.environ["ENV"] = "testing"
os.environ["SECRET_KEY"] = "test-secret"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="qist-logs-"))

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from werkzeug.security import generate_password_hash

from config import Config
from qistmarket import create_app
from qistmarket.auth import PARTITION_APP, PARTITION_WEB, generate_token
from qistmarket.models import (
    db, Role, User, ROLE_ADMIN, ROLE_SALES_OFFICER, ROLE_SUPER_ADMIN, ROLE_VERIFICATION_OFFICER, seed_roles,
)

PASSWORD = "secret123"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SECRET_KEY = "test-secret"
    RATELIMIT_ENABLED = False
    NOTIFICATIONS_ASYNC = False
    FIREBASE_CREDENTIALS_FILE = None
    FIREBASE_PROJECT_ID = None
    FIREBASE_CLIENT_EMAIL = None
    FIREBASE_PRIVATE_KEY = None
    UPLOADS_BASE_URL = "http://testserver/uploads"


class RecordingNotifier:
    """Stands in for the push service and remembers every assignment"""

    def __init__(self):
        self.sent = []
        self.fail = False

    def notify_assignment(self, officer, order):
        if self.fail:
            raise RuntimeError("push service down")
        self.sent.append((officer.id, order.id))

    def flush(self, timeout=None):
        pass


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def app(tmp_path):
    app = create_app(TestConfig)
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    app.extensions["qist_notifier"] = RecordingNotifier()
    with app.app_context():
        db.create_all()
        seed_roles(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def notifier(app):
    return app.extensions["qist_notifier"]


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 3, 15, 10, 30))


@pytest.fixture
def make_user(app):
    def _make(username, role_name, **fields):
        role = Role.query.filter_by(name=role_name).one()
        user = User(
            full_name=fields.pop("full_name", username.title()),
            username=username,
            password_hash=generate_password_hash(fields.pop("password", PASSWORD)),
            role_id=role.id,
            **fields,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def users(make_user):
    return {
        "root": make_user("root", ROLE_SUPER_ADMIN),
        "admin": make_user("admin", ROLE_ADMIN),
        "sales": make_user("sales", ROLE_SALES_OFFICER),
        "officer1": make_user("officer1", ROLE_VERIFICATION_OFFICER, device_id="device-1", fcm_token="fcm-1"),
        "officer2": make_user("officer2", ROLE_VERIFICATION_OFFICER, device_id="device-2", fcm_token="fcm-2"),
    }


@pytest.fixture
def auth_headers(app):
    """Bearer header for a user; officers get an app token bound to their device"""

    def _headers(user):
        if user.is_verification_officer:
            token = generate_token(user, PARTITION_APP, device_id=user.device_id)
        else:
            token = generate_token(user, PARTITION_WEB)
        return {"Authorization": f"Bearer {token}"}

    return _headers


def order_payload(**overrides):
    payload = {
        "customer_name": "Ali Raza",
        "whatsapp_number": "03001234567",
        "address": "House 12, Street 4",
        "city": "Lahore",
        "area": "Johar Town",
        "product_name": "Honda CD 70",
        "total_amount": 180000,
        "advance_amount": 30000,
        "monthly_amount": 12500,
        "months": 12,
        "channel": "walk-in",
    }
    payload.update(overrides)
    return payload
