"""
Integration tests for the payment endpoints.

Uses FastAPI TestClient with the real app (minus lifespan). Every
collaborator dependency is overridden with the in-memory fixtures.
Background tasks (deferred success emails) run before TestClient returns.
"""
from app.errors import PersistenceError
from app.models import NotificationKind
from tests.conftest import make_txn

INITIATE_BODY = {
    "amount": 1000,
    "plan": "Premium",
    "duration": 12,
    "customerName": "Asha Rao",
    "customerEmail": "asha@example.com",
    "customerPhone": "9876543210",
    "currency": "INR",
}


def webhook_body(order_id, order_status):
    return {
        "type": "PAYMENT_SUCCESS_WEBHOOK",
        "event_time": "2024-01-15T10:23:45+05:30",
        "data": {
            "order": {"order_id": order_id, "order_status": order_status, "order_amount": 1000},
            "payment": {"payment_status": "SUCCESS", "cf_payment_id": 555},
        },
    }


# ---------------------------------------------------------------------------
# POST /payment/initiate
# ---------------------------------------------------------------------------
class TestInitiateEndpoint:
    def test_returns_200_with_session(self, client, store):
        resp = client.post("/payment/initiate", json=INITIATE_BODY)

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["merchantTransactionId"].startswith("HFU_")
        assert body["payment_session_id"] == f"session_{body['merchantTransactionId']}"
        assert body["order_id"] == body["merchantTransactionId"]
        assert store.get(body["merchantTransactionId"]).status == "INITIATED"

    def test_missing_phone_returns_400(self, client):
        body = {k: v for k, v in INITIATE_BODY.items() if k != "customerPhone"}
        resp = client.post("/payment/initiate", json=body)

        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["status"] == "FAILED"
        assert "customerPhone" in resp.json()["message"]

    def test_non_numeric_amount_returns_400(self, client):
        resp = client.post("/payment/initiate", json={**INITIATE_BODY, "amount": "lots"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_gateway_error_returns_500_without_record(self, client, gateway, db):
        from app.models import Transaction

        gateway.fail_create = "Gateway returned 401: authentication failed"
        resp = client.post("/payment/initiate", json=INITIATE_BODY)

        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert resp.json()["error"] is None  # no internal detail outside debug mode
        assert db.query(Transaction).count() == 0

    def test_numeric_phone_is_accepted(self, client, store):
        resp = client.post("/payment/initiate", json={**INITIATE_BODY, "customerPhone": 9876543210})

        assert resp.status_code == 200
        txn = store.get(resp.json()["merchantTransactionId"])
        assert txn.customer_phone == "9876543210"

    def test_short_numeric_phone_gets_placeholder(self, client, store):
        resp = client.post("/payment/initiate", json={**INITIATE_BODY, "customerPhone": 12345})

        assert resp.status_code == 200
        assert store.get(resp.json()["merchantTransactionId"]).customer_phone == "9999999999"

    def test_nan_amount_returns_400_before_gateway(self, client, gateway, db):
        from app.models import Transaction

        body = (
            b'{"amount": NaN, "customerName": "Asha Rao", '
            b'"customerEmail": "asha@example.com", "customerPhone": "9876543210"}'
        )
        resp = client.post("/payment/initiate", content=body,
                           headers={"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert "finite" in resp.json()["message"]
        assert gateway.created_orders == []
        assert db.query(Transaction).count() == 0


# ---------------------------------------------------------------------------
# POST /payment/verify
# ---------------------------------------------------------------------------
class TestVerifyEndpoint:
    def test_pending_while_active(self, client, db, store, gateway):
        make_txn(db, "txn_1")
        gateway.statuses["txn_1"] = "ACTIVE"
        resp = client.post("/payment/verify", json={"orderId": "txn_1"})

        assert resp.status_code == 200
        body = resp.json()
        assert body == {
            "success": False,
            "status": "PENDING",
            "data": {
                "order_id": "txn_1",
                "order_status": "ACTIVE",
                "order_amount": 1000.0,
                "order_currency": "INR",
                "source": "verify",
            },
        }
        assert store.get("txn_1").status == "PROCESSING"

    def test_paid_returns_success_and_sends_emails(self, client, db, store, gateway, notifier):
        make_txn(db, "txn_1")
        gateway.statuses["txn_1"] = "PAID"
        resp = client.post("/payment/verify", json={"orderId": "txn_1"})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["status"] == "SUCCESS"
        txn = store.get("txn_1")
        assert txn.admin_email_sent is True
        assert txn.customer_email_sent is True
        assert len(notifier.sent) == 2

    def test_failed_status(self, client, db, gateway):
        make_txn(db, "txn_1")
        gateway.statuses["txn_1"] = "EXPIRED"
        resp = client.post("/payment/verify", json={"orderId": "txn_1"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "FAILED"
        assert resp.json()["success"] is False

    def test_unknown_order_returns_404(self, client, gateway):
        resp = client.post("/payment/verify", json={"orderId": "nope"})
        assert resp.status_code == 404
        assert resp.json()["success"] is False
        assert gateway.status_calls == []

    def test_missing_order_id_returns_400(self, client):
        resp = client.post("/payment/verify", json={})
        assert resp.status_code == 400

    def test_gateway_error_returns_500(self, client, db, store, gateway):
        make_txn(db, "txn_1")
        gateway.fail_status = "Gateway request timed out"
        resp = client.post("/payment/verify", json={"orderId": "txn_1"})

        assert resp.status_code == 500
        assert resp.json()["status"] == "FAILED"
        assert store.get("txn_1").status == "INITIATED"


# ---------------------------------------------------------------------------
# POST /payment/webhook
# ---------------------------------------------------------------------------
class TestWebhookEndpoint:
    def test_paid_is_acknowledged(self, client, db, store, notifier):
        make_txn(db, "txn_1")
        resp = client.post("/payment/webhook", json=webhook_body("txn_1", "PAID"))

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["status"] == "SUCCESS"
        assert store.get("txn_1").status == "COMPLETED"
        assert len(notifier.sent) == 2

    def test_business_failure_still_acknowledged(self, client, db, store):
        make_txn(db, "txn_1")
        resp = client.post("/payment/webhook", json=webhook_body("txn_1", "TERMINATED"))

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["status"] == "FAILED"
        assert store.get("txn_1").status == "FAILED"

    def test_duplicate_webhooks_send_one_email_per_kind(self, client, db, notifier):
        make_txn(db, "txn_1")
        for _ in range(3):
            assert client.post("/payment/webhook", json=webhook_body("txn_1", "PAID")).status_code == 200

        assert len(notifier.sent_for("txn_1", NotificationKind.ADMIN)) == 1
        assert len(notifier.sent_for("txn_1", NotificationKind.CUSTOMER)) == 1

    def test_missing_order_id_returns_400(self, client):
        resp = client.post("/payment/webhook", json={"data": {"order": {"order_status": "PAID"}}})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_invalid_json_returns_400(self, client):
        resp = client.post(
            "/payment/webhook",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400

    def test_unknown_order_returns_404(self, client):
        resp = client.post("/payment/webhook", json=webhook_body("ghost", "PAID"))
        assert resp.status_code == 404

    def test_store_failure_returns_500(self, client, db, store, monkeypatch):
        make_txn(db, "txn_1")

        def unavailable(*args, **kwargs):
            raise PersistenceError("Could not update transaction")

        monkeypatch.setattr(store, "update_if", unavailable)
        resp = client.post("/payment/webhook", json=webhook_body("txn_1", "PAID"))

        assert resp.status_code == 500
        assert resp.json() == {
            "success": False,
            "status": "FAILED",
            "message": "Could not update transaction",
            "error": None,
        }
        assert store.get("txn_1").status == "INITIATED"

    def test_signature_enforced_when_enabled(self, client, db, test_settings):
        make_txn(db, "txn_1")
        test_settings.gateway_verify_webhooks = True

        rejected = client.post("/payment/webhook", json=webhook_body("txn_1", "PAID"),
                               headers={"x-webhook-signature": "forged", "x-webhook-timestamp": "1"})
        accepted = client.post("/payment/webhook", json=webhook_body("txn_1", "PAID"),
                               headers={"x-webhook-signature": "valid-signature",
                                        "x-webhook-timestamp": "1"})

        assert rejected.status_code == 401
        assert accepted.status_code == 200


# ---------------------------------------------------------------------------
# End to end: initiate -> verify (ACTIVE) -> webhook (PAID)
# ---------------------------------------------------------------------------
class TestPaymentLifecycle:
    def test_full_flow(self, client, store, gateway, notifier):
        initiated = client.post("/payment/initiate", json=INITIATE_BODY).json()
        txn_id = initiated["merchantTransactionId"]
        assert store.get(txn_id).status == "INITIATED"

        gateway.statuses[txn_id] = "ACTIVE"
        verified = client.post("/payment/verify", json={"orderId": txn_id}).json()
        assert verified["status"] == "PENDING"
        assert store.get(txn_id).status == "PROCESSING"

        gateway.statuses[txn_id] = "PAID"
        hook = client.post("/payment/webhook", json=webhook_body(txn_id, "PAID"))
        assert hook.status_code == 200

        # A late poll after the webhook changes nothing
        late = client.post("/payment/verify", json={"orderId": txn_id}).json()
        assert late["status"] == "SUCCESS"

        txn = store.get(txn_id)
        assert txn.status == "COMPLETED"
        assert txn.amount == 1000.0
        assert txn.currency == "INR"
        assert txn.admin_email_sent is True
        assert txn.customer_email_sent is True
        assert len(notifier.sent_for(txn_id, NotificationKind.ADMIN)) == 1
        assert len(notifier.sent_for(txn_id, NotificationKind.CUSTOMER)) == 1


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
