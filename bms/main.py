"""Building Management System core API."""
# Load .env before any app code that might read config
from dotenv import load_dotenv
from pathlib import Path
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from bms import __version__
from bms.config import get_settings
from bms.database import Base, engine
from bms.envelope import ApiResponse
# Import models so Base.metadata has all tables before create_all
from bms.models import User, RefreshToken, Lease  # noqa: F401
from bms.dependencies import get_request_authorizer
from bms.responses import install_error_handlers
from bms.routers import auth, leases, owner
from bms.security import AuthorizationMiddleware

log = logging.getLogger("uvicorn.error")

settings = get_settings()
app = FastAPI(title=settings.app_name, version=__version__, debug=settings.debug)

app.add_middleware(AuthorizationMiddleware, authorizer_factory=get_request_authorizer)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(owner.router, prefix=settings.api_prefix)
app.include_router(leases.router, prefix=settings.api_prefix)


@app.on_event("startup")
def startup():
    if not (settings.mailgun_api_key and settings.mailgun_domain):
        log.warning("[Email] Mailgun not configured - verification emails will be skipped")
    if not (settings.twilio_account_sid and settings.twilio_auth_token):
        log.warning("[SMS] Twilio not configured - verification SMS will be skipped")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        log.warning("Database startup failed (tables skipped). Check DATABASE_URL. Error: %s", e)


def _health(request: Request) -> ApiResponse:
    data = {"service": settings.app_name, "version": __version__, "status": "UP"}
    return ApiResponse.ok(data, "Service is running", request.url.path)


@app.get("/health", response_model=ApiResponse[dict])
def health(request: Request):
    return _health(request)


@app.get(f"{settings.api_prefix}/health", response_model=ApiResponse[dict])
def api_health(request: Request):
    return _health(request)
