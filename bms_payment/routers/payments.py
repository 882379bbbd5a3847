"""Payment intent endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Request

from bms.envelope import ApiResponse
from bms_payment.client import CoreServiceClient, UpstreamUnavailable
from bms_payment.config import PaymentSettings, get_payment_settings
from bms_payment.schemas import PaymentIntentRequest, PaymentIntentResponse, PublishableKeyResponse
from bms_payment.services.payments import PaymentError, PaymentService

router = APIRouter(tags=["payments"])


def get_core_client(settings: PaymentSettings = Depends(get_payment_settings)) -> CoreServiceClient:
    return CoreServiceClient(
        settings.core_service_url,
        api_prefix=settings.core_service_api_prefix,
        timeout=settings.core_service_timeout_seconds,
    )


def get_payment_service(
    settings: PaymentSettings = Depends(get_payment_settings),
    core_client: CoreServiceClient = Depends(get_core_client),
) -> PaymentService:
    return PaymentService(settings, core_client)


def _create(request: Request, data: PaymentIntentRequest, create) -> ApiResponse:
    try:
        intent = create(data, request.headers.get("Authorization"))
    except UpstreamUnavailable as e:
        raise HTTPException(status_code=502, detail=str(e))
    except PaymentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(intent, "Payment intent created successfully", request.url.path)


@router.get("/stripe/publishable-key", response_model=ApiResponse[PublishableKeyResponse])
def publishable_key(request: Request, payments: PaymentService = Depends(get_payment_service)):
    key = payments.publishable_key()
    if not key:
        raise HTTPException(status_code=503, detail="Stripe publishable key is not configured")
    return ApiResponse.ok(PublishableKeyResponse(publishable_key=key), None, request.url.path)


@router.post("/create-card-intent", response_model=ApiResponse[PaymentIntentResponse])
def create_card_intent(request: Request, data: PaymentIntentRequest, payments: PaymentService = Depends(get_payment_service)):
    return _create(request, data, payments.create_card_intent)


@router.post("/create-ach-intent", response_model=ApiResponse[PaymentIntentResponse])
def create_ach_intent(request: Request, data: PaymentIntentRequest, payments: PaymentService = Depends(get_payment_service)):
    return _create(request, data, payments.create_ach_intent)


@router.get("/health", response_model=ApiResponse[dict])
def health(request: Request):
    return ApiResponse.ok({"service": "payment-service", "status": "UP"}, "Service is running", request.url.path)


@router.get("/{payment_intent_id}", response_model=ApiResponse[PaymentIntentResponse])
def get_payment_intent(request: Request, payment_intent_id: str, payments: PaymentService = Depends(get_payment_service)):
    try:
        intent = payments.retrieve_intent(payment_intent_id)
    except PaymentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(intent, None, request.url.path)


@router.post("/{payment_intent_id}/cancel", response_model=ApiResponse[PaymentIntentResponse])
def cancel_payment_intent(request: Request, payment_intent_id: str, payments: PaymentService = Depends(get_payment_service)):
    try:
        intent = payments.cancel_intent(payment_intent_id)
    except PaymentError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ApiResponse.ok(intent, "Payment intent cancelled successfully", request.url.path)
