import os
import tempfile
import uuid

import pytest

# must be set before muniq modules read their config
_TMP = tempfile.mkdtemp(prefix="muniq-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["ADMIN_PASSWORD"] = "letmein"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["GATEWAY_BACKEND"] = "mock"
os.environ["MOCK_SECRET"] = "mock-secret"
os.environ["SCREENSHOT_BACKEND"] = "local"
os.environ["SCREENSHOT_DIR"] = os.path.join(_TMP, "uploads")
os.environ["PUBLIC_BASE_URL"] = "http://testserver"
os.environ["LOG_LEVEL"] = "WARNING"

from fastapi.testclient import TestClient  # noqa: E402

from muniq.server import app  # noqa: E402

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x06\x00\x00\x00\x1f\x15\xc4\x89\x00\x00\x00\nIDATx\x9cc\x00\x01"
    b"\x00\x00\x05\x00\x01\r\n-\xb4\x00\x00\x00\x00IEND\xaeB`\x82"
)


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def _fresh_cookies(client):
    client.cookies.clear()
    yield


@pytest.fixture
def gateway(client):
    return client.app.state.gateway


@pytest.fixture
def upload_dir():
    return os.environ["SCREENSHOT_DIR"]


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def make_registration(client):
    def _make(**overrides) -> str:
        body = {
            "first_name": "Asha",
            "last_name": "Rao",
            "email": f"asha.{uuid.uuid4().hex[:8]}@example.com",
            "contact": "9876543210",
            "standard": "11",
            "institution": "DPS",
            "mun_experience": "beginner",
            "course_id": "mun_course",
            "workshop_slot": "2-4pm",
        }
        body.update(overrides)
        resp = client.post("/api/register", json=body)
        assert resp.status_code == 200, resp.text
        return resp.json()["data"]["id"]
    return _make


@pytest.fixture
def checkout(client, gateway):
    """Create a gateway order and pay it; returns the verify payload."""
    def _checkout(registration_id: str, amount=999) -> dict:
        resp = client.post("/api/payment/create-order", json={
            "amount": amount,
            "currency": "INR",
            "registrationId": registration_id,
            "customerDetails": {"name": "Asha Rao"},
        })
        assert resp.status_code == 200, resp.text
        order_id = resp.json()["data"]["orderId"]
        payment_id, signature = gateway.complete(order_id)
        return {
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature,
            "registrationId": registration_id,
        }
    return _checkout


@pytest.fixture
def admin_token(client):
    resp = client.post("/api/admin/auth", json={"password": "letmein"})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return resp.json()["token"]
