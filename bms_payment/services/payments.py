"""Stripe payment intents.

When a request names a lease, the amount, tenant identity and description are
taken from the core service and any client-supplied amount is discarded. A
failed lookup aborts the request; there is no fallback to the client amount.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import stripe

from bms_payment.client import CoreServiceClient, LeaseAmount
from bms_payment.config import PaymentSettings
from bms_payment.schemas import PaymentIntentRequest, PaymentIntentResponse

log = logging.getLogger("uvicorn.error")

MIN_AMOUNT_CENTS = 50


class PaymentError(Exception):
    """Payment request rejected by validation or by Stripe."""


def amount_in_cents(total: Decimal) -> int:
    return int((Decimal(total) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def _field(obj, key: str):
    try:
        return obj[key]
    except KeyError:
        return None


def _intent_response(intent) -> PaymentIntentResponse:
    return PaymentIntentResponse(
        client_secret=_field(intent, "client_secret"),
        payment_intent_id=intent["id"],
        status=intent["status"],
        amount=intent["amount"],
        currency=intent["currency"],
    )


class PaymentService:
    def __init__(self, settings: PaymentSettings, core_client: CoreServiceClient):
        self.settings = settings
        self.core_client = core_client

    def publishable_key(self) -> str:
        return self.settings.stripe_publishable_key

    def create_card_intent(self, request: PaymentIntentRequest, authorization: str | None) -> PaymentIntentResponse:
        return self._create_intent(
            request,
            authorization,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
        )

    def create_ach_intent(self, request: PaymentIntentRequest, authorization: str | None) -> PaymentIntentResponse:
        return self._create_intent(request, authorization, automatic_payment_methods={"enabled": True})

    def retrieve_intent(self, payment_intent_id: str) -> PaymentIntentResponse:
        self._configure_stripe()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            log.error("[Payment] Retrieve %s failed: %s", payment_intent_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
        return _intent_response(intent)

    def cancel_intent(self, payment_intent_id: str) -> PaymentIntentResponse:
        self._configure_stripe()
        try:
            intent = stripe.PaymentIntent.cancel(payment_intent_id)
        except stripe.StripeError as e:
            log.error("[Payment] Cancel %s failed: %s", payment_intent_id, e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
        log.info("[Payment] Cancelled PaymentIntent %s", payment_intent_id)
        return _intent_response(intent)

    def _configure_stripe(self) -> None:
        if not self.settings.stripe_secret_key:
            raise PaymentError("Payments are not configured. Set STRIPE_SECRET_KEY in .env.")
        stripe.api_key = self.settings.stripe_secret_key

    def _create_intent(self, request: PaymentIntentRequest, authorization: str | None, **method_params) -> PaymentIntentResponse:
        params = self._priced_params(request, authorization)
        self._configure_stripe()
        try:
            intent = stripe.PaymentIntent.create(**params, **method_params)
        except stripe.StripeError as e:
            log.error("[Payment] PaymentIntent creation failed: %s", e)
            raise PaymentError(getattr(e, "user_message", None) or str(e)) from e
        log.info("[Payment] Created PaymentIntent %s for %d cents", intent["id"], intent["amount"])
        return _intent_response(intent)

    def _priced_params(self, request: PaymentIntentRequest, authorization: str | None) -> dict:
        currency = (request.currency or self.settings.default_currency).lower()
        metadata: dict[str, str] = {}
        if request.lease_id:
            lease = self.core_client.get_lease_payment_details(request.lease_id, authorization)
            if request.amount is not None:
                log.info("[Payment] Ignoring client amount for lease %s", request.lease_id)
            amount = amount_in_cents(lease.total_payable_amount)
            log.info("[Payment] Verified amount %s for lease %s", lease.total_payable_amount, request.lease_id)
            metadata.update(_lease_metadata(lease, request.lease_id))
            description = f"Rent payment for {lease.property_name} - Lease {lease.lease_id}"
            receipt_email = request.receipt_email or lease.tenant_email
        else:
            amount = _client_amount_cents(request.amount)
            if request.tenant_id:
                metadata["tenant_id"] = request.tenant_id
            description = request.description
            receipt_email = request.receipt_email or request.tenant_email

        if amount < MIN_AMOUNT_CENTS:
            raise PaymentError(f"Amount must be at least {MIN_AMOUNT_CENTS} cents")

        params: dict = {"amount": amount, "currency": currency, "metadata": metadata}
        if description:
            params["description"] = description
        if receipt_email:
            params["receipt_email"] = str(receipt_email)
        return params


def _client_amount_cents(amount) -> int:
    if amount is None:
        raise PaymentError("Amount is required when leaseId is not provided")
    try:
        cents = Decimal(str(amount).strip()) if not isinstance(amount, bool) else None
    except InvalidOperation:
        cents = None
    if cents is None or not cents.is_finite() or cents != cents.to_integral_value():
        raise PaymentError("Amount must be a whole number of cents")
    return int(cents)


def _lease_metadata(lease: LeaseAmount, requested_lease_id: str) -> dict[str, str]:
    out = {"lease_id": str(requested_lease_id), "lease_reference": lease.lease_id}
    if lease.tenant_id:
        out["tenant_id"] = lease.tenant_id
    return out
