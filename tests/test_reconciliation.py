import httpx
import pytest

from conftest import BNPL_SECRET, CARD_SECRET, bnpl_gateway, card_gateway, place_order
from storefront.reconciliation import TRANSITIONS, PaymentEvent, apply_event, next_state


def events_of(store, order_id):
    return [event.event_type for event in store.list_events(order_id)]


class TestTransitionTable:
    def test_every_event_and_payment_status_has_an_entry(self):
        for event in PaymentEvent:
            for payment_status in ("pending", "initiated", "manual", "failed", "paid"):
                assert (event, payment_status) in TRANSITIONS

    @pytest.mark.parametrize("event", [PaymentEvent.CALLBACK_FAILED, PaymentEvent.WEBHOOK_CANCELLED])
    def test_paid_is_sticky(self, event):
        assert next_state(event, "paid") is None

    @pytest.mark.parametrize("event", [PaymentEvent.CALLBACK_SUCCEEDED, PaymentEvent.WEBHOOK_CAPTURED])
    def test_capture_always_lands_on_paid(self, event):
        for payment_status in ("pending", "initiated", "manual", "failed", "paid"):
            assert next_state(event, payment_status) == ("Paid", "paid")

    def test_unknown_payment_status_behaves_like_pending(self):
        assert next_state(PaymentEvent.WEBHOOK_CANCELLED, "authorised") == ("Cancelled", "failed")


class TestApplyEvent:
    def test_cancel_read_before_a_concurrent_payment_is_refused(self, client, store):
        order = place_order(client, store)
        stale = store.get_order(order["id"])
        store.update_order_payment(order["id"], "4711", "paid", "Paid")

        result = apply_event(store, stale, PaymentEvent.WEBHOOK_CANCELLED, "webhook")

        assert (result.status, result.payment_status) == ("Paid", "paid")
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        assert events_of(store, order["id"]) == ["created", "transition_refused"]

    def test_capture_after_a_stale_read_still_lands_on_paid(self, client, store):
        order = place_order(client, store)
        stale = store.get_order(order["id"])
        store.update_order_payment(order["id"], "4711", "paid", "Paid")

        result = apply_event(store, stale, PaymentEvent.WEBHOOK_CAPTURED, "webhook")

        assert (result.status, result.payment_status) == ("Paid", "paid")
        assert "transition_refused" not in events_of(store, order["id"])


class TestCallback:
    def test_failure_flag_cancels_and_redirects_to_failure_page(self, client, store):
        order = place_order(client, store)

        response = client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "error": "true"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"http://testserver/order/failed?orderId={order['id']}"
        stored = store.get_order(order["id"])
        assert stored.status == "Cancelled"
        assert stored.payment_status == "failed"

    def test_bnpl_failed_status_cancels(self, client, store):
        order = place_order(client, store)

        response = client.get(
            "/payment/deema/callback",
            params={"orderId": order["id"], "status": "failed"},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith(f"/order/failed?orderId={order['id']}")
        assert store.get_order(order["id"]).payment_status == "failed"

    def test_bnpl_success_marks_paid_without_status_query(self, client, store, gateways):
        def handler(request):
            raise AssertionError("no status query for this gateway")

        gateways["deema"] = bnpl_gateway(handler)
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-1", "initiated")

        response = client.get(
            "/payment/deema/callback",
            params={"orderId": order["id"], "status": "success"},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith(f"/order/success?orderId={order['id']}")
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        # No paymentId on the callback keeps the stored reference
        assert stored.payment_id == "DM-1"

    def test_card_callback_confirmed_by_status_query(self, client, store, gateways):
        queried = {}

        def handler(request):
            assert request.url.path == "/v2/GetPaymentStatus"
            queried["body"] = request.content
            return httpx.Response(200, json={"IsSuccess": True, "Data": {"InvoiceStatus": "Paid"}})

        gateways["myfatoorah"] = card_gateway(handler)
        order = place_order(client, store)
        store.update_order_payment(order["id"], "4711", "initiated")

        response = client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "paymentId": "0708-PAY"},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith(f"/order/success?orderId={order['id']}")
        assert b'"KeyType":"PaymentId"' in queried["body"].replace(b" ", b"")
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        assert stored.payment_id == "0708-PAY"
        assert events_of(store, order["id"]) == ["created", "status_changed", "payment_changed"]

    @pytest.mark.parametrize(
        "gateway_response",
        [
            lambda: httpx.Response(200, json={"IsSuccess": True, "Data": {"InvoiceStatus": "Pending"}}),
            lambda: httpx.Response(500, text="Internal Server Error"),
            lambda: httpx.Response(200, json={"IsSuccess": True, "Data": ["weird"]}),
        ],
    )
    def test_card_callback_is_optimistic_when_unconfirmed(self, client, store, gateways, gateway_response):
        gateways["myfatoorah"] = card_gateway(lambda request: gateway_response())
        order = place_order(client, store)

        response = client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "paymentId": "0708-PAY"},
            follow_redirects=False,
        )

        assert response.headers["location"].endswith(f"/order/success?orderId={order['id']}")
        assert store.get_order(order["id"]).payment_status == "paid"

    def test_card_callback_status_query_timeout_is_optimistic(self, client, store, gateways):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        gateways["myfatoorah"] = card_gateway(handler)
        order = place_order(client, store)

        response = client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "paymentId": "0708-PAY"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert store.get_order(order["id"]).status == "Paid"

    def test_card_callback_survives_unexpected_status_query_error(self, client, store, gateways, monkeypatch):
        gateway = card_gateway(lambda request: httpx.Response(200, json={}))

        async def broken_confirm(payment_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(gateway, "confirm_payment", broken_confirm)
        gateways["myfatoorah"] = gateway
        order = place_order(client, store)

        response = client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "paymentId": "77"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"].endswith(f"/order/success?orderId={order['id']}")
        assert store.get_order(order["id"]).payment_status == "paid"

    @pytest.mark.parametrize("order_id", ["424242", "not-a-number", ""])
    def test_unknown_order_redirects_to_failure_page(self, client, store, order_id):
        order = place_order(client, store)

        response = client.get(
            "/payment/deema/callback",
            params={"orderId": order_id, "status": "success"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert "/order/failed" in response.headers["location"]
        assert store.get_order(order["id"]).payment_status == "pending"

    def test_failure_callback_does_not_downgrade_paid_order(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "4711", "paid", "Paid")

        client.get(
            "/payment/myfatoorah/callback",
            params={"orderId": order["id"], "error": "true"},
            follow_redirects=False,
        )

        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        assert events_of(store, order["id"])[-1] == "transition_refused"


def bnpl_webhook(client, payload, secret=BNPL_SECRET):
    headers = {"x-webhook-secret": secret} if secret is not None else {}
    return client.post("/payment/deema/webhook", json=payload, headers=headers)


class TestWebhook:
    def test_captured_marks_pending_order_paid(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "pending")

        response = bnpl_webhook(client, {"order_reference": "DM-9", "status": "captured"})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")

    def test_expired_does_not_downgrade_paid_order(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "paid", "Paid")

        response = bnpl_webhook(client, {"order_reference": "DM-9", "status": "expired"})

        assert response.status_code == 200
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        assert events_of(store, order["id"])[-1] == "transition_refused"

    @pytest.mark.parametrize("status", ["expired", "cancelled"])
    def test_cancellation_fails_unpaid_order(self, client, store, status):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")

        bnpl_webhook(client, {"order_ref": "DM-9", "status": status})

        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Cancelled", "failed")

    def test_capture_after_late_cancel_is_applied(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")

        bnpl_webhook(client, {"order_reference": "DM-9", "status": "cancelled"})
        bnpl_webhook(client, {"order_reference": "DM-9", "status": "captured"})

        assert store.get_order(order["id"]).status == "Paid"

    def test_matches_by_merchant_order_id(self, client, store):
        order = place_order(client, store)

        bnpl_webhook(client, {"merchant_order_id": str(order["id"]), "status": "captured"})

        assert store.get_order(order["id"]).payment_status == "paid"

    def test_card_webhook_matches_by_order_number(self, client, store):
        order = place_order(client, store)

        response = client.post(
            "/payment/myfatoorah/webhook",
            json={"Data": {"InvoiceId": 99, "CustomerReference": order["orderNumber"], "TransactionStatus": "SUCCESS"}},
            headers={"x-webhook-secret": CARD_SECRET},
        )

        assert response.status_code == 200
        assert store.get_order(order["id"]).status == "Paid"

    def test_replayed_webhook_is_acknowledged_and_idempotent(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")
        payload = {"order_reference": "DM-9", "status": "captured"}

        first = bnpl_webhook(client, payload)
        second = bnpl_webhook(client, payload)

        assert first.status_code == second.status_code == 200
        assert second.json() == {"received": True}
        assert len(store.list_orders()) == 1
        stored = store.get_order(order["id"])
        assert (stored.status, stored.payment_status) == ("Paid", "paid")
        assert events_of(store, order["id"]).count("status_changed") == 1

    def test_unmatched_webhook_is_acknowledged(self, client, store):
        order = place_order(client, store)

        response = bnpl_webhook(client, {"order_reference": "nobody", "status": "captured"})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert store.get_order(order["id"]).payment_status == "pending"

    def test_unknown_status_is_ignored(self, client, store):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")

        bnpl_webhook(client, {"order_reference": "DM-9", "status": "authorized"})

        assert store.get_order(order["id"]).payment_status == "initiated"

    def test_unparseable_body_is_acknowledged(self, client):
        response = client.post(
            "/payment/deema/webhook",
            content=b"not json",
            headers={"x-webhook-secret": BNPL_SECRET, "content-type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True}

    @pytest.mark.parametrize("secret", [None, "wrong-secret"])
    def test_bad_secret_is_rejected_without_mutation(self, client, store, secret):
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")

        response = bnpl_webhook(client, {"order_reference": "DM-9", "status": "captured"}, secret=secret)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert store.get_order(order["id"]).payment_status == "initiated"

    def test_gateway_without_secret_accepts_no_webhooks(self, client, store, gateways):
        gateways["deema"] = bnpl_gateway(lambda request: httpx.Response(200, json={}), webhook_secret="")
        order = place_order(client, store)
        store.update_order_payment(order["id"], "DM-9", "initiated")

        response = bnpl_webhook(client, {"order_reference": "DM-9", "status": "captured"}, secret="")

        assert response.status_code == 401
        assert store.get_order(order["id"]).payment_status == "initiated"

    def test_custom_secret_header(self, client, store, gateways):
        gateways["deema"] = bnpl_gateway(
            lambda request: httpx.Response(200, json={}), webhook_header="X-Deema-Signature"
        )
        order = place_order(client, store)

        response = client.post(
            "/payment/deema/webhook",
            json={"merchant_order_id": str(order["id"]), "status": "captured"},
            headers={"X-Deema-Signature": BNPL_SECRET},
        )

        assert response.status_code == 200
        assert store.get_order(order["id"]).payment_status == "paid"
