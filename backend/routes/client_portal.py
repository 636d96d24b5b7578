"""
Client portal: read-only access to a shared quotation plus approve/reject.

These routes are reached through the tokenized share link and do not use
the API guard; the token is the credential.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from models import Quotation, QuotationStatus
from schemas import ClientRejection, Quotation as QuotationSchema
from routes.quotations import apply_status_change, commit_or_500, fetch_quotation_tree, record_activity

# Statuses in which the client may still decide
CLIENT_DECISION_STATUSES = (
    QuotationStatus.sent.value,
    QuotationStatus.viewed.value,
    QuotationStatus.negotiating.value,
)


def get_shared_quotation(db: Session, token: str) -> Quotation:
    """
    Resolve a client access token.

    Raises:
        HTTPException: 404 for unknown tokens, 410 once the link has expired
    """
    quotation = db.query(Quotation).filter(Quotation.client_access_token == token).first()
    if not quotation:
        raise HTTPException(status_code=404, detail="Invalid or expired link")

    if quotation.client_access_expires_at and quotation.client_access_expires_at < datetime.utcnow():
        raise HTTPException(status_code=410, detail="Link has expired")

    return quotation


def check_client_can_decide(quotation: Quotation, action: str) -> None:
    if quotation.status not in CLIENT_DECISION_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Quotation cannot be {action} (current status: {quotation.status})"
        )


router = APIRouter(prefix="/quotations/client", tags=["client portal"])


@router.get("/{token}")
def view_shared_quotation(token: str, request: Request, db: Session = Depends(get_db)):
    """
    Show a shared quotation to the client.

    Each view is counted; the first view of a sent quotation marks it as viewed.
    """
    quotation = get_shared_quotation(db, token)

    quotation.client_view_count = (quotation.client_view_count or 0) + 1
    quotation.last_client_view_at = datetime.utcnow()
    if quotation.status == QuotationStatus.sent.value:
        apply_status_change(quotation, QuotationStatus.viewed.value)
        record_activity(
            db, quotation, "viewed", "Client viewed quotation",
            "Quotation was opened via the client portal", request=request
        )
    commit_or_500(db, "Failed to load quotation")
    db.refresh(quotation)

    tree = fetch_quotation_tree(db, quotation.id)
    return {
        "quotation": QuotationSchema.model_validate(quotation),
        "spaces": tree["spaces"],
        "components": tree["components"],
        "lineItems": tree["lineItems"],
    }


@router.post("/{token}/approve")
def approve_shared_quotation(token: str, request: Request, db: Session = Depends(get_db)):
    """Client approves the quotation."""
    quotation = get_shared_quotation(db, token)
    check_client_can_decide(quotation, "approved")

    apply_status_change(quotation, QuotationStatus.approved.value)
    record_activity(
        db, quotation, "approved", "Client Approved Quotation",
        "Quotation was approved by the client via portal", request=request
    )
    commit_or_500(db, "Failed to approve quotation")
    return {"success": True, "message": "Quotation approved successfully"}


@router.post("/{token}/reject")
def reject_shared_quotation(
    token: str,
    request: Request,
    rejection: Optional[ClientRejection] = None,
    db: Session = Depends(get_db)
):
    """Client rejects the quotation, optionally with a reason."""
    quotation = get_shared_quotation(db, token)
    check_client_can_decide(quotation, "rejected")
    reason = rejection.reason if rejection else None

    apply_status_change(quotation, QuotationStatus.rejected.value, reason)
    record_activity(
        db, quotation, "rejected", "Client Rejected Quotation",
        reason or "Quotation was rejected by the client via portal", request=request
    )
    commit_or_500(db, "Failed to reject quotation")
    return {"success": True, "message": "Quotation rejected"}
