"""HTTP client for the core service's authoritative lease amounts."""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import httpx

log = logging.getLogger("uvicorn.error")


class UpstreamUnavailable(Exception):
    """The core service could not be reached or refused to price the lease."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class LeaseAmount:
    lease_id: str
    tenant_id: str
    tenant_name: str | None
    tenant_email: str | None
    tenant_phone: str | None
    property_name: str | None
    total_payable_amount: Decimal


class CoreServiceClient:
    def __init__(
        self,
        base_url: str,
        api_prefix: str = "/api/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self.timeout = timeout
        self.transport = transport

    def get_lease_payment_details(self, lease_id: str, authorization: str | None) -> LeaseAmount:
        """Fetch the payable total for a lease, forwarding the caller's bearer credential."""
        url = f"{self.base_url}{self.api_prefix}/leases/{lease_id}/payment-details"
        headers = {"Accept": "application/json"}
        if authorization:
            headers["Authorization"] = authorization
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.get(url, headers=headers)
        except httpx.HTTPError as e:
            log.error("[Payment] Core service unreachable for lease %s: %s", lease_id, e)
            raise UpstreamUnavailable("Core service is unavailable") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code != 200 or not isinstance(body, dict) or not body.get("success"):
            message = body.get("message") if isinstance(body, dict) else None
            log.warning("[Payment] Core service refused lease %s: status=%s message=%s", lease_id, resp.status_code, message)
            raise UpstreamUnavailable(
                f"Failed to fetch lease payment details: {message or resp.status_code}",
                status_code=resp.status_code,
            )

        data = body.get("data") or {}
        try:
            total = Decimal(str(data["totalPayableAmount"]))
        except (KeyError, InvalidOperation) as e:
            raise UpstreamUnavailable("Core service returned no payable amount") from e
        return LeaseAmount(
            lease_id=str(data.get("leaseId") or lease_id),
            tenant_id=str(data.get("tenantId") or ""),
            tenant_name=data.get("tenantName"),
            tenant_email=data.get("tenantEmail"),
            tenant_phone=data.get("tenantPhone"),
            property_name=data.get("propertyName"),
            total_payable_amount=total,
        )
