import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
import stripe

from app import create_app
from config import TestConfig
from models import db
from models.slot import Slot
from models.user import StaffUser
from security.password import hash_password

STAFF_EMAIL = "staff@example.com"
STAFF_PASSWORD = "correct horse battery"


@pytest.fixture
def app(tmp_path):
    class _Config(TestConfig):
        # A file database so threads get their own connections
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 15}}

    app = create_app(_Config)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_slot(app):
    counter = {"n": 0}

    def _make(start=None, minutes=60, staff_member="alice"):
        counter["n"] += 1
        if start is None:
            base = datetime.utcnow().replace(minute=0, second=0, microsecond=0)
            start = base + timedelta(days=2, hours=counter["n"])
        slot = Slot(staff_member=staff_member, start_time=start, end_time=start + timedelta(minutes=minutes))
        db.session.add(slot)
        db.session.commit()
        return slot

    return _make


@pytest.fixture
def staff(app):
    user = StaffUser(email=STAFF_EMAIL, password_hash=hash_password(STAFF_PASSWORD), full_name="Staff Member")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def staff_headers(client, staff):
    resp = client.post("/auth/login", json={"email": STAFF_EMAIL, "password": STAFF_PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}


@pytest.fixture
def stripe_calls(monkeypatch):
    """Replaces PaymentIntent.create; returns the list of kwargs it was called with."""
    calls = []

    def fake_create(**kwargs):
        calls.append(kwargs)
        n = len(calls)
        return SimpleNamespace(id=f"pi_test_{n}", client_secret=f"pi_test_{n}_secret_abc")

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    return calls


@pytest.fixture
def sent_emails(monkeypatch):
    from utils import emailer

    sent = []

    def fake_send(to_email, subject, body):
        sent.append({"to": to_email, "subject": subject, "body": body})
        return True, None

    monkeypatch.setattr(emailer, "send_email", fake_send)
    return sent


def sign_payload(payload: str, secret: str = TestConfig.STRIPE_WEBHOOK_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signature = hmac.new(secret.encode("utf-8"), f"{timestamp}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def post_webhook(client):
    def _post(event_type, intent_id, metadata, signature=None):
        payload = json.dumps({
            "id": f"evt_{intent_id}",
            "type": event_type,
            "data": {"object": {"id": intent_id, "object": "payment_intent", "metadata": metadata}},
        })
        headers = {"Stripe-Signature": signature or sign_payload(payload), "Content-Type": "application/json"}
        return client.post("/webhooks/stripe", data=payload, headers=headers)

    return _post


def fresh(model, pk):
    """Reads a row bypassing the test session's identity map."""
    db.session.expire_all()
    return db.session.get(model, pk)
