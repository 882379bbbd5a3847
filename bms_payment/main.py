"""BMS payment service API."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from bms.envelope import ApiResponse
from bms.responses import install_error_handlers
from bms_payment import __version__
from bms_payment.config import get_payment_settings
from bms_payment.routers import payments

log = logging.getLogger("uvicorn.error")

settings = get_payment_settings()
app = FastAPI(title=settings.payment_app_name, version=__version__, debug=settings.debug)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

app.include_router(payments.router, prefix=settings.payment_api_prefix)


@app.on_event("startup")
def startup():
    if not settings.stripe_secret_key:
        log.warning("[Payment] STRIPE_SECRET_KEY not set - payment intent endpoints will fail")
    log.info("[Payment] Core service at %s", settings.core_service_url)


@app.get("/health", response_model=ApiResponse[dict])
def health(request: Request):
    data = {"service": settings.payment_app_name, "version": __version__, "status": "UP"}
    return ApiResponse.ok(data, "Service is running", request.url.path)
