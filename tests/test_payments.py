import subprocess
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from bms.models import Lease, UserRole
from bms_payment.client import CoreServiceClient, UpstreamUnavailable
from bms_payment.main import app as payment_app
from bms_payment.routers.payments import get_core_client
from bms_payment.services.payments import amount_in_cents

PAYMENTS = "/api/payments"


def _lease_envelope(total="660.00"):
    return {
        "success": True,
        "message": "Lease payment details retrieved successfully",
        "data": {
            "connectionId": 12,
            "leaseId": "LEASE-2025-000C",
            "tenantId": 3,
            "tenantName": "Ana Lima",
            "tenantEmail": "ana@example.com",
            "tenantPhone": "5551112222",
            "propertyName": "Maple Court 4B",
            "rentAmount": "600.00",
            "latePaymentCharges": "60.00",
            "totalPayableAmount": total,
        },
    }


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = []

    def fake_create(**params):
        calls.append(params)
        return {
            "id": "pi_test_123",
            "client_secret": "pi_test_123_secret",
            "status": "requires_payment_method",
            "amount": params["amount"],
            "currency": params["currency"],
        }

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
    return calls


@pytest.fixture
def core_requests():
    return []


@pytest.fixture
def payment_client(core_requests):
    state = {"handler": lambda request: httpx.Response(200, json=_lease_envelope())}

    def transport_handler(request: httpx.Request) -> httpx.Response:
        core_requests.append(request)
        return state["handler"](request)

    payment_app.dependency_overrides[get_core_client] = lambda: CoreServiceClient(
        "http://core.test", transport=httpx.MockTransport(transport_handler)
    )
    with TestClient(payment_app) as c:
        c.core_handler = state
        yield c
    payment_app.dependency_overrides.clear()


def test_amount_in_cents():
    assert amount_in_cents(Decimal("660.00")) == 66000
    assert amount_in_cents(Decimal("0.505")) == 51
    assert amount_in_cents(Decimal("1")) == 100


def test_lease_amount_overrides_client_amount(payment_client, stripe_calls, core_requests):
    r = payment_client.post(
        f"{PAYMENTS}/create-card-intent",
        json={"leaseId": "12", "amount": 100, "description": "cheap"},
        headers={"Authorization": "Bearer tenant-token"},
    )
    assert r.status_code == 200
    assert r.json()["data"]["amount"] == 66000
    (params,) = stripe_calls
    assert params["amount"] == 66000
    assert params["description"] == "Rent payment for Maple Court 4B - Lease LEASE-2025-000C"
    assert params["receipt_email"] == "ana@example.com"
    assert params["metadata"]["lease_id"] == "12"
    assert params["automatic_payment_methods"] == {"enabled": True, "allow_redirects": "never"}

    (upstream,) = core_requests
    assert upstream.url.path == "/api/v1/leases/12/payment-details"
    assert upstream.headers["Authorization"] == "Bearer tenant-token"


def test_ach_intent_uses_lease_amount(payment_client, stripe_calls):
    r = payment_client.post(f"{PAYMENTS}/create-ach-intent", json={"leaseId": "12", "amount": 1})
    assert r.status_code == 200
    assert stripe_calls[0]["amount"] == 66000
    assert stripe_calls[0]["automatic_payment_methods"] == {"enabled": True}


@pytest.mark.parametrize("amount", [1.5, "abc-not-used", -3])
def test_lease_payment_discards_any_client_amount(payment_client, stripe_calls, amount):
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"leaseId": "12", "amount": amount})
    assert r.status_code == 200
    assert r.json()["data"]["amount"] == 66000
    assert stripe_calls[0]["amount"] == 66000


@pytest.mark.parametrize("status", [401, 403, 404, 500])
def test_upstream_refusal_aborts(payment_client, stripe_calls, status):
    payment_client.core_handler["handler"] = lambda request: httpx.Response(
        status, json={"success": False, "message": "nope"}
    )
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"leaseId": "12", "amount": 100})
    assert r.status_code == 502
    assert r.json()["success"] is False
    assert stripe_calls == []


def test_upstream_unreachable_aborts(payment_client, stripe_calls):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    payment_client.core_handler["handler"] = refuse
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"leaseId": "12", "amount": 100})
    assert r.status_code == 502
    assert r.json()["message"] == "Core service is unavailable"
    assert stripe_calls == []


def test_unsuccessful_envelope_with_200_aborts(payment_client, stripe_calls):
    payment_client.core_handler["handler"] = lambda request: httpx.Response(200, json={"success": False, "data": None})
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"leaseId": "12"})
    assert r.status_code == 502
    assert stripe_calls == []


def test_client_amount_used_without_lease(payment_client, stripe_calls, core_requests):
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"amount": 2500, "currency": "USD"})
    assert r.status_code == 200
    assert stripe_calls[0]["amount"] == 2500
    assert stripe_calls[0]["currency"] == "usd"
    assert core_requests == []


@pytest.mark.parametrize("body, message", [
        ({}, "Amount is required when leaseId is not provided"),
        ({"amount": 10}, "Amount must be at least 50 cents"),
        ({"amount": 99.5}, "Amount must be a whole number of cents"),
        ({"amount": "abc"}, "Amount must be a whole number of cents"),
    ])
def test_client_amount_validation(payment_client, stripe_calls, body, message):
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json=body)
    assert r.status_code == 400
    assert r.json()["message"] == message
    assert stripe_calls == []


def test_stripe_error_is_400(payment_client, monkeypatch):
    def failing_create(**params):
        raise stripe.StripeError("card declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", failing_create)
    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"amount": 500})
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_retrieve_and_cancel(payment_client, monkeypatch):
    intent = {"id": "pi_1", "client_secret": None, "status": "canceled", "amount": 500, "currency": "usd"}
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", lambda pid: {**intent, "id": pid, "status": "succeeded"})
    monkeypatch.setattr(stripe.PaymentIntent, "cancel", lambda pid: {**intent, "id": pid})

    r = payment_client.get(f"{PAYMENTS}/pi_1")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "succeeded"
    r = payment_client.post(f"{PAYMENTS}/pi_1/cancel")
    assert r.json()["data"]["status"] == "canceled"
    assert r.json()["data"]["paymentIntentId"] == "pi_1"


def test_publishable_key_and_health(payment_client):
    r = payment_client.get(f"{PAYMENTS}/stripe/publishable-key")
    assert r.json()["data"]["publishableKey"] == "pk_test_dummy"
    for path in ("/health", f"{PAYMENTS}/health"):
        body = payment_client.get(path).json()
        assert body["success"] is True
        assert body["message"] == "Service is running"
        assert body["data"]["status"] == "UP"


def test_client_parses_core_envelope():
    client = CoreServiceClient(
        "http://core.test/",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=_lease_envelope("1234.56"))),
    )
    lease = client.get_lease_payment_details("12", None)
    assert lease.total_payable_amount == Decimal("1234.56")
    assert lease.tenant_id == "3"


def test_client_rejects_non_json():
    client = CoreServiceClient(
        "http://core.test", transport=httpx.MockTransport(lambda request: httpx.Response(502, text="bad gateway"))
    )
    with pytest.raises(UpstreamUnavailable) as exc:
        client.get_lease_payment_details("12", "Bearer x")
    assert exc.value.status_code == 502


def test_amount_comes_from_real_core_service(client, db, make_user, api_token, payment_client, stripe_calls):
    """Payment service priced by the core app itself, through the forwarded bearer token."""
    tenant = make_user(role=UserRole.TENANT)
    manager = make_user(role=UserRole.PROPERTY_MANAGER)
    lease = Lease(
        tenant_id=tenant.id,
        manager_id=manager.id,
        property_name="Maple Court 4B",
        monthly_rent=Decimal("600.00"),
        start_date=date(2025, 3, 1),
    )
    db.add(lease)
    db.commit()

    def via_core(request: httpx.Request) -> httpx.Response:
        r = client.get(request.url.path, headers={"Authorization": request.headers.get("Authorization", "")})
        return httpx.Response(r.status_code, json=r.json())

    payment_client.core_handler["handler"] = via_core
    token = api_token(tenant)
    expected = client.get(
        f"/api/v1/leases/{lease.id}/payment-details", headers={"Authorization": f"Bearer {token}"}
    ).json()["data"]["totalPayableAmount"]

    r = payment_client.post(
        f"{PAYMENTS}/create-card-intent",
        json={"leaseId": str(lease.id), "amount": 100},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert r.status_code == 200
    assert stripe_calls[0]["amount"] == amount_in_cents(Decimal(str(expected)))
    assert stripe_calls[0]["amount"] != 100

    r = payment_client.post(f"{PAYMENTS}/create-card-intent", json={"leaseId": str(lease.id), "amount": 100})
    assert r.status_code == 502


def test_payment_app_import_leaves_core_database_alone():
    code = (
        "import sys, bms_payment.main\n"
        "loaded = sorted(m for m in sys.modules if m in ('bms.database', 'bms.models', 'sqlalchemy'))\n"
        "assert not loaded, loaded\n"
    )
    subprocess.run([sys.executable, "-c", code], check=True, cwd=Path(__file__).resolve().parent.parent)
