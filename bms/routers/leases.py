"""Leases: role-scoped listings and the authoritative payment amount."""
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from bms.database import get_db
from bms.dependencies import get_current_user, require_manager, require_tenant
from bms.envelope import ApiResponse
from bms.models.user import User
from bms.schemas.lease import LeasePaymentDetailsResponse, LeaseResponse
from bms.services import leases as lease_service
from bms.services.errors import LeaseAccessDenied, LeaseNotFound

router = APIRouter(tags=["leases"])


@router.get("/leases/{lease_id}/payment-details", response_model=ApiResponse[LeasePaymentDetailsResponse])
def lease_payment_details(
    request: Request,
    lease_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Rent plus late charges for one lease; the payment service charges exactly this total."""
    try:
        details = lease_service.get_lease_payment_details(db, current_user, lease_id)
    except LeaseNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except LeaseAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    return ApiResponse.ok(
        LeasePaymentDetailsResponse(**asdict(details)),
        "Lease payment details retrieved successfully",
        request.url.path,
    )


@router.get("/tenant/leases", response_model=ApiResponse[list[LeaseResponse]], dependencies=[Depends(require_tenant)])
def tenant_leases(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    items = [LeaseResponse.model_validate(lease) for lease in lease_service.list_leases(db, current_user)]
    return ApiResponse.ok(items, "Leases retrieved successfully", request.url.path)


@router.get("/manager/leases", response_model=ApiResponse[list[LeaseResponse]], dependencies=[Depends(require_manager)])
def manager_leases(request: Request, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    items = [LeaseResponse.model_validate(lease) for lease in lease_service.list_leases(db, current_user)]
    return ApiResponse.ok(items, "Leases retrieved successfully", request.url.path)
