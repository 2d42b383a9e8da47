import hashlib
import hmac
import json
import time

from conftest import GATEWAY_TOKEN, future_date


def _create(client, **overrides):
    payload = {
        "name": "Amina Otieno",
        "email": "amina@example.com",
        "phone": "+254700000001",
        "service": "Classic full set",
        "date": future_date(10),
        "timeSlot": "10:00",
        "originalPrice": 5000,
    }
    payload.update(overrides)
    return client.post("/bookings", json=payload)


def _stripe_headers(payload: str, secret: str = "whsec_test"):
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.headers["X-Frame-Options"] == "DENY"


def test_create_and_fetch_booking(client):
    resp = _create(client)
    assert resp.status_code == 201
    body = resp.get_json()
    booking = body["booking"]
    assert body["bookingId"] == booking["id"]
    assert body["deposit"] == 0
    assert booking["status"] == "confirmed"
    assert booking["finalPrice"] == 5000

    resp = client.get(f"/bookings/{booking['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["booking"]["email"] == "amina@example.com"

    resp = client.get("/slots/lookup", query_string={"date": booking["date"], "timeSlot": "10:00"})
    assert resp.get_json()["available"] is False


def test_double_booking_is_409(client):
    assert _create(client).status_code == 201
    resp = _create(client, email="other@example.com")
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "slot_conflict"


def test_bad_payload_is_400(client):
    resp = _create(client, originalPrice="lots")
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "originalPrice"


def test_unknown_booking_is_404(client):
    assert client.get("/bookings/doesnotexist").status_code == 404


def test_admin_routes_need_the_key(client):
    assert client.get("/admin/bookings").status_code == 403
    assert client.get("/admin/bookings", headers={"X-Admin-Key": "wrong"}).status_code == 403


def test_admin_payment_and_completion(client, admin_headers):
    booking_id = _create(client).get_json()["booking"]["id"]

    resp = client.post(f"/admin/bookings/{booking_id}/payments", json={"amount": 5000, "method": "cash"},
                       headers=admin_headers)
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["justCompletedPayment"] is True
    assert body["booking"]["status"] == "paid"

    resp = client.post(f"/admin/bookings/{booking_id}/complete", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()["referralCode"].startswith("REF-")

    logs = client.get("/admin/audit-logs", query_string={"entity_id": booking_id}, headers=admin_headers)
    actions = {row["action"]: row for row in logs.get_json()}
    assert "BOOKING_PAID_IN_FULL" in actions
    assert actions["BOOKING_COMPLETE"]["actor"] == "admin:jane"


def test_admin_fine_and_duplicate_fine(client, admin_headers):
    booking_id = _create(client).get_json()["booking"]["id"]

    resp = client.post(f"/admin/bookings/{booking_id}/fine", json={}, headers=admin_headers)
    assert resp.get_json()["booking"]["fine"]["amount"] == 500

    resp = client.post(f"/admin/bookings/{booking_id}/fine", json={"amount": 300}, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "already_fined"


def test_admin_cancel_twice_warns(client, admin_headers):
    booking_id = _create(client).get_json()["booking"]["id"]

    first = client.post(f"/admin/bookings/{booking_id}/cancel", json={"reason": "Sick"}, headers=admin_headers)
    assert first.get_json()["booking"]["cancellation"]["refundStatus"] == "not_required"

    second = client.post(f"/admin/bookings/{booking_id}/cancel", json={}, headers=admin_headers)
    assert second.status_code == 200
    assert second.get_json()["warning"] == "Booking was already cancelled"


def test_admin_walk_in(client, admin_headers):
    resp = client.post("/admin/bookings", json={
        "name": "Walk In",
        "email": "walkin@example.com",
        "phone": "+254700000002",
        "service": "Lash lift",
        "date": future_date(0),
        "timeSlot": "07:00",
        "originalPrice": 2500,
    }, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.get_json()["booking"]["source"] == "walk_in"


def test_gateway_notifications(client):
    booking_id = _create(client).get_json()["booking"]["id"]
    payload = {"bookingId": booking_id, "amount": 1500, "method": "mobileMoney", "externalRef": "ws_CO_1"}

    assert client.post("/payments/gateway", json=payload).status_code == 401

    headers = {"X-Gateway-Token": GATEWAY_TOKEN}
    first = client.post("/payments/gateway", json=payload, headers=headers).get_json()
    second = client.post("/payments/gateway", json=payload, headers=headers).get_json()
    assert first["duplicate"] is False
    assert second["duplicate"] is True
    assert second["booking"]["depositPaid"] == 1500


def test_stripe_checkout_records_card_payment(client):
    booking_id = _create(client).get_json()["booking"]["id"]
    payload = json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "amount_total": 250000,
            "metadata": {"booking_id": booking_id},
        }},
    })

    resp = client.post("/webhooks/stripe", data=payload, content_type="application/json",
                       headers=_stripe_headers(payload))
    assert resp.status_code == 200
    assert resp.get_json()["duplicate"] is False

    booking = client.get(f"/bookings/{booking_id}").get_json()["booking"]
    assert booking["depositPaid"] == 2500
    assert booking["payments"][0]["externalRef"] == "cs_test_1"

    bad = client.post("/webhooks/stripe", data=payload, content_type="application/json",
                      headers=_stripe_headers(payload, "whsec_other"))
    assert bad.status_code == 400


def test_stripe_sub_unit_amount_is_logged(client, caplog):
    booking_id = _create(client).get_json()["booking"]["id"]
    payload = json.dumps({
        "id": "evt_2",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_2",
            "object": "checkout.session",
            "amount_total": 150050,
            "metadata": {"booking_id": booking_id},
        }},
    })

    with caplog.at_level("WARNING", logger="routes.stripe_webhook"):
        resp = client.post("/webhooks/stripe", data=payload, content_type="application/json",
                           headers=_stripe_headers(payload))
    assert resp.status_code == 200
    assert "50 sub-unit amount not recorded" in caplog.text
    assert client.get(f"/bookings/{booking_id}").get_json()["booking"]["depositPaid"] == 1500


def test_code_on_a_booking_needs_the_booking_client(client, admin_headers):
    booking_id = _create(client).get_json()["booking"]["id"]
    code = client.post("/admin/codes", json={
        "ownerIdentity": "amina@example.com",
        "type": "referral",
        "effect": "discount_percentage",
        "value": 10,
    }, headers=admin_headers).get_json()["code"]

    resp = client.post("/codes/redeem", json={
        "code": code, "email": "someone-else@example.com", "bookingId": booking_id,
    })
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "email"
    assert client.get(f"/bookings/{booking_id}").get_json()["booking"]["discount"] == 0


def test_codes_flow(client, admin_headers):
    resp = client.post("/admin/codes", json={
        "ownerIdentity": "owner@example.com",
        "type": "referral",
        "effect": "discount_percentage",
        "value": 10,
    }, headers=admin_headers)
    assert resp.status_code == 201
    code = resp.get_json()["code"]

    check = client.post("/codes/validate", json={"code": code, "email": "owner@example.com"}).get_json()
    assert check == {"valid": False, "reason": "self_use", "error": "You cannot redeem your own referral code"}

    redeemed = client.post("/codes/redeem", json={"code": code, "email": "friend@example.com"})
    assert redeemed.status_code == 200
    assert redeemed.get_json()["effect"]["value"] == 10

    again = client.post("/codes/redeem", json={"code": code, "email": "other@example.com"})
    assert again.status_code == 409
    assert again.get_json()["code"] == "already_used"


def test_spin_once(client):
    first = client.post("/codes/spin", json={"email": "lucky@example.com"})
    assert first.status_code == 201
    assert first.get_json()["code"].startswith("SPIN")

    second = client.post("/codes/spin", json={"email": "lucky@example.com"})
    assert second.status_code == 422
    assert second.get_json()["reason"] == "already_spun"


def test_returning_discount_endpoint(client):
    resp = client.get("/bookings/returning-discount",
                      query_string={"email": "new@example.com", "date": future_date(5)})
    assert resp.status_code == 200
    assert resp.get_json()["discountPercent"] == 0
