import asyncio
import os

import pytest

from starlette.datastructures import UploadFile

from muniq import reconcile, storage
from muniq.errors import DuplicatePayment, InvalidFile
from muniq.model import Store
from muniq.server import SessionAsync


# ----------------------------
# gateway path
# ----------------------------
def test_gateway_payment_then_second_payment_conflicts(
    client, make_registration, checkout
):
    r1 = make_registration(email="a@x.com")

    resp = client.post("/api/payment/verify", json=checkout(r1))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["registrationId"] == r1
    assert data["status"] == "completed"
    assert data["paymentMethod"] == "razorpay"
    assert data["verified"] is True
    first_id = data["id"]

    resp = client.post("/api/payment/verify", json=checkout(r1))
    assert resp.status_code == 409
    assert resp.json() == {
        "success": False,
        "message": "Payment already exists for this registration",
    }

    resp = client.get("/api/payment", params={"registrationId": r1})
    assert resp.json()["data"]["id"] == first_id


def test_amount_comes_from_the_gateway(client, make_registration, checkout):
    rid = make_registration()
    payload = checkout(rid, amount=1)
    payload["amount"] = 5000

    resp = client.post("/api/payment/verify", json=payload)
    assert resp.status_code == 200
    assert resp.json()["data"]["amount"] == 1.0
    assert resp.json()["data"]["currency"] == "INR"


def test_bad_signature_rejected_even_without_registration(client, checkout,
                                                          make_registration):
    payload = checkout(make_registration())
    payload["razorpay_signature"] = "f" * 64
    payload["registrationId"] = "does-not-exist"

    resp = client.post("/api/payment/verify", json=payload)
    assert resp.status_code == 400
    assert "Invalid signature" in resp.json()["message"]


def test_signature_for_another_payment_is_rejected(client, checkout,
                                                   make_registration):
    rid = make_registration()
    a = checkout(rid)
    b = checkout(rid)
    a["razorpay_signature"] = b["razorpay_signature"]

    resp = client.post("/api/payment/verify", json=a)
    assert resp.status_code == 400


def test_valid_signature_unknown_registration(client, checkout,
                                              make_registration):
    payload = checkout(make_registration())
    payload["registrationId"] = "nope"

    resp = client.post("/api/payment/verify", json=payload)
    assert resp.status_code == 404
    assert resp.json()["message"] == "Registration not found"


def test_verify_requires_all_fields(client):
    resp = client.post("/api/payment/verify", json={
        "razorpay_order_id": "order_1", "registrationId": "r",
    })
    assert resp.status_code == 400
    assert resp.json()["success"] is False


# ----------------------------
# screenshot path
# ----------------------------
def test_screenshot_upload_creates_completed_qr_payment(
    client, make_registration, upload_dir, png_bytes
):
    rid = make_registration()
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("upi receipt.png", png_bytes, "image/png")},
        data={"registrationId": rid},
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["registrationId"] == rid
    assert data["status"] == "completed"
    assert data["paymentMethod"] == "qr_code"
    assert data["amount"] == 11.0
    assert data["paymentId"].startswith("qr_")
    assert data["paymentId"].endswith(rid[-8:])

    url = data["screenshotUrl"]
    assert url.startswith("http://testserver/uploads/payment-screenshots/")
    assert url.endswith(".png")
    rel = url.split("/uploads/", 1)[1]
    with open(os.path.join(upload_dir, rel), "rb") as f:
        assert f.read() == png_bytes

    # served back by the app
    served = client.get("/uploads/" + rel)
    assert served.status_code == 200
    assert served.content == png_bytes


def test_screenshot_after_gateway_payment_conflicts(
    client, make_registration, checkout, png_bytes
):
    rid = make_registration()
    assert client.post("/api/payment/verify",
                       json=checkout(rid)).status_code == 200

    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("s.png", png_bytes, "image/png")},
        data={"registrationId": rid},
    )
    assert resp.status_code == 409


def test_gateway_after_screenshot_conflicts(client, make_registration,
                                            checkout, png_bytes):
    rid = make_registration()
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("s.jpg", png_bytes, "image/jpeg")},
        data={"registrationId": rid},
    )
    assert resp.status_code == 200

    assert client.post("/api/payment/verify",
                       json=checkout(rid)).status_code == 409


def test_non_image_rejected_before_lookup(client):
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("notes.pdf", b"%PDF-1.4", "application/pdf")},
        data={"registrationId": "no-such-registration"},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Please upload a valid image file"


def test_oversized_image_rejected_before_lookup(client, monkeypatch,
                                                 png_bytes):
    monkeypatch.setattr(reconcile, "MAX_SCREENSHOT_BYTES", 16)
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("big.png", png_bytes, "image/png")},
        data={"registrationId": "no-such-registration"},
    )
    assert resp.status_code == 400
    assert "10MB" in resp.json()["message"]


def test_size_ceiling_is_ten_megabytes():
    reconcile.check_screenshot("image/png", 10 * 1024 * 1024)
    with pytest.raises(InvalidFile):
        reconcile.check_screenshot("image/png", 10 * 1024 * 1024 + 1)
    with pytest.raises(InvalidFile):
        reconcile.check_screenshot(None, 10)


def test_upload_requires_file_and_registration(client, make_registration,
                                               png_bytes):
    resp = client.post("/api/payment/upload-screenshot",
                       data={"registrationId": make_registration()})
    assert resp.status_code == 400
    assert resp.json()["message"] == "No screenshot file provided"

    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("s.png", png_bytes, "image/png")},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Registration ID is required"


def test_upload_for_unknown_registration(client, png_bytes):
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("s.png", png_bytes, "image/png")},
        data={"registrationId": "no-such-registration"},
    )
    assert resp.status_code == 404


# ----------------------------
# at most one payment under concurrency
# ----------------------------
def test_concurrent_verifies_create_one_payment(client, gateway,
                                                make_registration, checkout):
    rid = make_registration()
    payloads = [checkout(rid) for _ in range(5)]

    async def one(p):
        async with SessionAsync() as session:
            return await reconcile.verify_gateway_payment(
                Store(session), gateway,
                p["razorpay_order_id"], p["razorpay_payment_id"],
                p["razorpay_signature"], p["registrationId"],
            )

    async def race():
        return await asyncio.gather(*(one(p) for p in payloads),
                                    return_exceptions=True)

    results = asyncio.run(race())
    wins = [r for r in results if not isinstance(r, Exception)]
    assert len(wins) == 1
    assert all(isinstance(r, DuplicatePayment)
               for r in results if isinstance(r, Exception))
    assert wins[0].registration_id == rid


def test_unique_constraint_backs_the_check(client, make_registration):
    rid = make_registration()

    async def insert_twice():
        fields = {
            "registration_id": rid, "amount": 100, "currency": "INR",
            "status": "completed", "method": "manual",
        }
        async with SessionAsync() as session:
            await Store(session).create_payment(dict(fields))
        async with SessionAsync() as session:
            await Store(session).create_payment(dict(fields))

    with pytest.raises(DuplicatePayment):
        asyncio.run(insert_twice())


# ----------------------------
# hostile input
# ----------------------------
@pytest.mark.parametrize("signature", ["é" * 64, 12345])
def test_non_text_signatures_are_mismatches(client, gateway, checkout,
                                            make_registration, signature):
    payload = checkout(make_registration())
    assert not gateway.verify_signature(
        payload["razorpay_order_id"], payload["razorpay_payment_id"],
        signature,
    )

    payload["razorpay_signature"] = signature
    resp = client.post("/api/payment/verify", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "message": "Payment verification failed. Invalid signature.",
    }


def test_oversized_upload_rejected_without_reading_it(
    client, make_registration, monkeypatch, png_bytes
):
    async def no_read(self, size=-1):
        raise AssertionError("upload body was read")

    monkeypatch.setattr(reconcile, "MAX_SCREENSHOT_BYTES", 16)
    monkeypatch.setattr(UploadFile, "read", no_read)
    resp = client.post(
        "/api/payment/upload-screenshot",
        files={"screenshot": ("big.png", png_bytes, "image/png")},
        data={"registrationId": make_registration()},
    )
    assert resp.status_code == 400
    assert "10MB" in resp.json()["message"]


@pytest.mark.parametrize("filename, ext", [
    ("receipt.PNG", "png"),
    ("photo.jpeg", "jpeg"),
    ("no-extension", "bin"),
    ("a.png/../../../escaped", "bin"),
    ("weird.p\\ng", "bin"),
    ("long.extension", "bin"),
])
def test_screenshot_path_keeps_a_plain_extension(filename, ext):
    path = storage.screenshot_path("rid", 1, filename)
    assert path == f"payment-screenshots/rid-1.{ext}"
