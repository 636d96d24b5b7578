import logging
import os
import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import Integer, cast, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from auth import protect_api_route
from database import get_db
from models import (
    Quotation, QuotationSpace, QuotationComponent, QuotationLineItem, QuotationActivity,
    QuotationStatus, User
)
from quotation_tree import (
    organize_quotation_data, replace_quotation_tree, replace_line_items, copy_quotation_tree
)
from schemas import (
    QuotationCreate, QuotationUpdate, QuotationStatusUpdate, Quotation as QuotationSchema,
    QuotationDetail, QuotationList, QuotationVersion, QuotationSpaceRow, QuotationComponentRow,
    QuotationLineItemRow, QuotationActivity as QuotationActivitySchema, ShareLink, ShareLinkStatus
)

logger = logging.getLogger(__name__)

# Scalar fields a PATCH may touch; anything else in the body is ignored
HEADER_FIELDS = (
    "title",
    "description",
    "status",
    "valid_from",
    "valid_until",
    "subtotal",
    "discount_type",
    "discount_value",
    "discount_amount",
    "taxable_amount",
    "tax_percent",
    "tax_amount",
    "overhead_percent",
    "overhead_amount",
    "grand_total",
    "payment_terms",
    "terms_and_conditions",
    "notes",
    "presentation_level",
    "hide_dimensions",
    "assigned_to",
    "template_id",
)

# Header fields carried from one version to the next
VERSIONED_FIELDS = (
    "lead_id",
    "project_id",
    "client_id",
    "template_id",
    "title",
    "description",
    "valid_from",
    "valid_until",
    "subtotal",
    "discount_type",
    "discount_value",
    "discount_amount",
    "taxable_amount",
    "tax_percent",
    "tax_amount",
    "overhead_percent",
    "overhead_amount",
    "grand_total",
    "payment_terms",
    "terms_and_conditions",
    "notes",
    "presentation_level",
    "hide_dimensions",
    "assigned_to",
)

# Body fields that may override the copied header when PATCH creates a new version
NEW_VERSION_OVERRIDES = (
    "title",
    "valid_until",
    "subtotal",
    "tax_percent",
    "tax_amount",
    "grand_total",
    "assigned_to",
    "notes",
)

LOCKED_STATUSES = (QuotationStatus.approved.value, QuotationStatus.rejected.value)
ACTIVE_STATUSES = (
    QuotationStatus.draft.value,
    QuotationStatus.sent.value,
    QuotationStatus.viewed.value,
    QuotationStatus.negotiating.value,
)

STATUS_TRANSITIONS = {
    "draft": {"sent", "expired"},
    "sent": {"viewed", "negotiating", "approved", "rejected", "expired"},
    "viewed": {"negotiating", "approved", "rejected", "expired"},
    "negotiating": {"approved", "rejected", "expired"},
    "approved": set(),
    "rejected": set(),
    "expired": set(),
}

STATUS_TIMESTAMPS = {
    "sent": "sent_at",
    "approved": "approved_at",
    "rejected": "rejected_at",
}

DEFAULT_VALIDITY_DAYS = 30
DEFAULT_TAX_PERCENT = 18


def get_tenant_quotation(db: Session, quotation_id: str, user: User) -> Quotation:
    """
    Fetch a quotation visible to the user's tenant.

    Raises:
        HTTPException: 404 if it does not exist or belongs to another tenant
    """
    quotation = (
        db.query(Quotation)
        .filter(Quotation.id == quotation_id, Quotation.tenant_id == user.tenant_id)
        .first()
    )
    if not quotation:
        raise HTTPException(status_code=404, detail="Quotation not found")
    return quotation


def check_tenant_member(user: User) -> None:
    """
    Tenant-scoped rows need a tenant; super admins without one can only read.

    Raises:
        HTTPException: 403 error if the user has no tenant
    """
    if not user.tenant_id:
        raise HTTPException(status_code=403, detail="Select an organization before creating records")


def check_quotation_editable(quotation: Quotation) -> None:
    """
    Approved and rejected quotations are read-only.

    Raises:
        HTTPException: 400 error if the quotation is locked
    """
    if quotation.status in LOCKED_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot modify a {quotation.status} quotation. Create a revision instead."
        )


def check_status_transition(current: str, new: str) -> None:
    """
    Validate a status change against the quotation workflow.

    Setting the current status again is allowed and does nothing.

    Raises:
        HTTPException: 400 error if the move is not allowed
    """
    if current == new:
        return
    if current in LOCKED_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change the status of a {current} quotation. Create a revision instead."
        )
    if new not in STATUS_TRANSITIONS.get(current, set()):
        raise HTTPException(
            status_code=400,
            detail=f"Cannot change status from '{current}' to '{new}'"
        )


def apply_status_change(quotation: Quotation, new_status: str, notes: Optional[str] = None) -> bool:
    """Set status and its timestamp. Returns False when the status did not change."""
    if quotation.status == new_status:
        return False
    quotation.status = new_status
    timestamp_field = STATUS_TIMESTAMPS.get(new_status)
    if timestamp_field:
        setattr(quotation, timestamp_field, datetime.utcnow())
    if new_status == QuotationStatus.rejected.value and notes:
        quotation.rejection_reason = notes
    return True


def record_activity(
    db: Session,
    quotation: Quotation,
    activity_type: str,
    title: str,
    description: Optional[str] = None,
    user: Optional[User] = None,
    request: Optional[Request] = None
) -> QuotationActivity:
    """
    Append an entry to the quotation's activity log.

    Args:
        db: Database session
        quotation: The quotation the activity belongs to
        activity_type: "created", "updated", "status_changed", "revision", "duplicated",
            "shared", "share_revoked", "viewed", "approved" or "rejected"
        title: Short human-readable title
        description: Optional details
        user: The acting user (None for client portal actions)
        request: Incoming request, used to capture client IP and user agent

    Returns:
        The created QuotationActivity
    """
    activity = QuotationActivity(
        quotation_id=quotation.id,
        activity_type=activity_type,
        title=title,
        description=description,
        performed_by=user.id if user else None,
    )
    if request is not None:
        forwarded = request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip")
        activity.ip_address = forwarded or (request.client.host if request.client else None)
        activity.user_agent = request.headers.get("user-agent")
    db.add(activity)
    return activity


def get_next_quotation_number(db: Session, now: Optional[datetime] = None) -> str:
    """
    Get the next quotation number for the current month.

    Format: QT{YYYY}{MM}{Sequence:04d}
    Example: QT2026100001, QT2026100002

    The sequence grows past 9999 (QT20261010000); it is compared as a number,
    not as text.
    """
    now = now or datetime.utcnow()
    prefix = f"QT{now.year}{now.month:02d}"
    sequence = cast(func.substr(Quotation.quotation_number, len(prefix) + 1), Integer)
    last_sequence = db.query(func.max(sequence)).filter(
        Quotation.quotation_number.like(f"{prefix}%")
    ).scalar()
    return f"{prefix}{(last_sequence or 0) + 1:04d}"


def get_next_version(db: Session, quotation_number: str) -> int:
    """Highest version for a quotation number plus one."""
    max_version = db.query(func.max(Quotation.version)).filter(
        Quotation.quotation_number == quotation_number
    ).scalar()
    return (max_version or 1) + 1


def create_quotation_version(
    db: Session,
    source: Quotation,
    user: User,
    overrides: Optional[Dict[str, Any]] = None
) -> Quotation:
    """
    Create the next version of a quotation (same quotation_number).

    The new row starts as a draft, points back at its source and carries the
    source header, with any overrides applied on top. The subtree is not
    copied here.
    """
    new_version = Quotation(
        tenant_id=source.tenant_id,
        quotation_number=source.quotation_number,
        version=get_next_version(db, source.quotation_number),
        parent_quotation_id=source.id,
        status=QuotationStatus.draft.value,
        created_by=user.id,
        updated_by=user.id,
    )
    for field in VERSIONED_FIELDS:
        setattr(new_version, field, getattr(source, field))
    for field, value in (overrides or {}).items():
        setattr(new_version, field, value)
    db.add(new_version)
    db.flush()  # Get the new quotation ID
    return new_version


def serialize_rows(schema, rows):
    return [schema.model_validate(row).model_dump(mode="json") for row in rows]


def fetch_quotation_tree(db: Session, quotation_id: str) -> Dict[str, Any]:
    """
    Load the flat rows of a quotation and organize them into the builder tree.

    Returns spaces (nested), components (orphan components), lineItems
    (orphan line items) and allLineItems (flat list in display order).
    """
    spaces = (
        db.query(QuotationSpace)
        .options(joinedload(QuotationSpace.space_type))
        .filter(QuotationSpace.quotation_id == quotation_id)
        .order_by(QuotationSpace.display_order)
        .all()
    )
    components = (
        db.query(QuotationComponent)
        .options(joinedload(QuotationComponent.component_type))
        .filter(QuotationComponent.quotation_id == quotation_id)
        .order_by(QuotationComponent.display_order)
        .all()
    )
    line_items = (
        db.query(QuotationLineItem)
        .options(joinedload(QuotationLineItem.quotation_cost_item))
        .filter(QuotationLineItem.quotation_id == quotation_id)
        .order_by(QuotationLineItem.display_order)
        .all()
    )

    space_rows = serialize_rows(QuotationSpaceRow, spaces)
    component_rows = serialize_rows(QuotationComponentRow, components)
    line_item_rows = serialize_rows(QuotationLineItemRow, line_items)

    organized = organize_quotation_data(space_rows, component_rows, line_item_rows)
    return {
        "spaces": organized["spaces"],
        "components": organized["orphanComponents"],
        "lineItems": organized["orphanLineItems"],
        "allLineItems": line_item_rows,
    }


def load_quotation_detail(db: Session, quotation_id: str) -> Quotation:
    return (
        db.query(Quotation)
        .options(
            joinedload(Quotation.assigned_user),
            joinedload(Quotation.created_user),
            joinedload(Quotation.updated_user)
        )
        .filter(Quotation.id == quotation_id)
        .first()
    )


def commit_or_500(db: Session, detail: str) -> None:
    """Commit the request's unit of work, rolling back and returning 500 on failure."""
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(detail)
        raise HTTPException(status_code=500, detail=detail)


def build_share_url(request: Request, token: str) -> str:
    base_url = os.getenv("APP_URL") or str(request.base_url)
    return f"{base_url.rstrip('/')}/quotation/{token}"


router = APIRouter(prefix="/quotations", tags=["quotations"])


@router.get("/", response_model=QuotationList)
def get_all_quotations(
    status: Optional[str] = None,
    lead_id: Optional[str] = None,
    quotation_number: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """List the tenant's quotations, newest first."""
    query = db.query(Quotation).filter(Quotation.tenant_id == user.tenant_id)

    if status and status != "all":
        if status == "active":
            query = query.filter(Quotation.status.in_(ACTIVE_STATUSES))
        else:
            query = query.filter(Quotation.status == status)

    if lead_id:
        query = query.filter(Quotation.lead_id == lead_id)

    if quotation_number:
        query = query.filter(Quotation.quotation_number == quotation_number)

    total = query.count()
    quotations = (
        query
        .order_by(Quotation.created_at.desc(), Quotation.version.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return QuotationList(
        quotations=[QuotationSchema.model_validate(q) for q in quotations],
        total=total,
        limit=limit,
        offset=offset
    )


@router.post("/", response_model=QuotationSchema)
def create_quotation(
    quotation_data: QuotationCreate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """
    Create a new draft quotation.

    Called by the lead pipeline when a lead reaches the proposal stage.
    """
    check_tenant_member(user)
    now = datetime.utcnow()

    try:
        quotation = Quotation(
            tenant_id=user.tenant_id,
            quotation_number=get_next_quotation_number(db, now),
            version=1,
            status=QuotationStatus.draft.value,
            title=quotation_data.title,
            description=quotation_data.description,
            lead_id=quotation_data.lead_id,
            project_id=quotation_data.project_id,
            client_id=quotation_data.client_id,
            valid_from=now,
            valid_until=quotation_data.valid_until or now + timedelta(days=DEFAULT_VALIDITY_DAYS),
            tax_percent=quotation_data.tax_percent,
            assigned_to=quotation_data.assigned_to or user.id,
            created_by=user.id,
            updated_by=user.id,
        )
        db.add(quotation)
        db.flush()
        record_activity(db, quotation, "created", "Quotation created", quotation.quotation_number, user=user)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create quotation")
        raise HTTPException(status_code=500, detail="Failed to create quotation")

    db.refresh(quotation)
    return quotation


@router.get("/{quotation_id}")
def get_quotation(
    quotation_id: str,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Get a single quotation with its space/component/line item tree and version history."""
    get_tenant_quotation(db, quotation_id, user)
    quotation = load_quotation_detail(db, quotation_id)

    tree = fetch_quotation_tree(db, quotation_id)

    versions = (
        db.query(Quotation)
        .filter(
            Quotation.quotation_number == quotation.quotation_number,
            Quotation.tenant_id == user.tenant_id
        )
        .order_by(Quotation.version.desc())
        .all()
    )

    return {
        "quotation": QuotationDetail.model_validate(quotation),
        "spaces": tree["spaces"],
        "components": tree["components"],
        "lineItems": tree["lineItems"],
        "allLineItems": tree["allLineItems"],
        "versions": [QuotationVersion.model_validate(v) for v in versions],
    }


@router.patch("/{quotation_id}")
def update_quotation(
    quotation_id: str,
    quotation_data: QuotationUpdate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """
    Update a quotation.

    - Allow-listed header fields are applied, everything else is ignored
    - "spaces" replaces the whole space/component/line item tree
    - "lineItems" (without "spaces") replaces only the line items
    - "create_new_version" leaves this row untouched and creates the next version

    The header update and tree replacement are committed together; on failure
    nothing is changed.
    """
    existing = get_tenant_quotation(db, quotation_id, user)

    if quotation_data.create_new_version:
        return create_version_from_patch(db, existing, quotation_data, user)

    check_quotation_editable(existing)

    update_data = {
        field: value
        for field, value in quotation_data.model_dump(exclude_unset=True).items()
        if field in HEADER_FIELDS
    }

    new_status = update_data.pop("status", None)
    status_changed = False
    if new_status is not None:
        new_status = new_status.value
        check_status_transition(existing.status, new_status)
        status_changed = apply_status_change(existing, new_status)

    for field, value in update_data.items():
        setattr(existing, field, value)
    existing.updated_by = user.id
    existing.updated_at = datetime.utcnow()

    try:
        changes = []
        if quotation_data.spaces is not None:
            counts = replace_quotation_tree(db, quotation_id, quotation_data.spaces)
            changes.append(
                f"{counts['spaces']} spaces, {counts['components']} components, "
                f"{counts['line_items']} line items"
            )
        elif quotation_data.line_items is not None:
            count = replace_line_items(db, quotation_id, quotation_data.line_items)
            changes.append(f"{count} line items")

        if status_changed:
            record_activity(db, existing, "status_changed", f"Status changed to {new_status}", user=user)
        record_activity(
            db, existing, "updated", "Quotation updated",
            "; ".join(changes) or None, user=user
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to update quotation %s", quotation_id)
        raise HTTPException(status_code=500, detail="Failed to update quotation")

    return {"quotation": QuotationDetail.model_validate(load_quotation_detail(db, quotation_id))}


def create_version_from_patch(db: Session, existing: Quotation, quotation_data: QuotationUpdate, user: User):
    """Handle PATCH with create_new_version: the body becomes the next version."""
    provided = quotation_data.model_dump(exclude_unset=True)
    overrides = {
        field: provided[field]
        for field in NEW_VERSION_OVERRIDES
        if provided.get(field) is not None
    }
    if quotation_data.version_notes:
        overrides["notes"] = quotation_data.version_notes
    if existing.tax_percent is None and "tax_percent" not in overrides:
        overrides["tax_percent"] = DEFAULT_TAX_PERCENT

    try:
        new_quotation = create_quotation_version(db, existing, user, overrides)
        if quotation_data.spaces is not None:
            replace_quotation_tree(db, new_quotation.id, quotation_data.spaces)
        else:
            copy_quotation_tree(db, existing.id, new_quotation.id)
        record_activity(
            db, new_quotation, "revision", f"Created version {new_quotation.version}",
            quotation_data.version_notes, user=user
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create new version of quotation %s", existing.id)
        raise HTTPException(status_code=500, detail="Failed to create new version")

    logger.info(
        "Created %s version %s (%s) from %s",
        new_quotation.quotation_number, new_quotation.version, new_quotation.id, existing.id
    )
    return {
        "success": True,
        "quotation": QuotationSchema.model_validate(new_quotation),
        "newVersionId": new_quotation.id,
        "message": f"Created version {new_quotation.version} successfully",
    }


@router.patch("/{quotation_id}/status", response_model=QuotationSchema)
def update_quotation_status(
    quotation_id: str,
    status_data: QuotationStatusUpdate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Move a quotation through the status workflow."""
    valid_statuses = [s.value for s in QuotationStatus]
    if not status_data.status or status_data.status not in valid_statuses:
        raise HTTPException(status_code=400, detail="Invalid status value")

    quotation = get_tenant_quotation(db, quotation_id, user)
    check_status_transition(quotation.status, status_data.status)

    if apply_status_change(quotation, status_data.status, status_data.notes):
        quotation.updated_by = user.id
        record_activity(
            db, quotation, "status_changed", f"Quotation marked as {status_data.status}",
            status_data.notes, user=user
        )
        commit_or_500(db, "Failed to update status")
        db.refresh(quotation)

    return quotation


@router.post("/{quotation_id}/revision")
def create_revision(
    quotation_id: str,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """
    Create a new revision of a quotation.

    The revision shares the quotation_number, takes the next version, starts
    as a draft and gets a full copy of the spaces, components and line items.
    Works for any status, including approved and rejected quotations.
    """
    source = get_tenant_quotation(db, quotation_id, user)

    try:
        revision = create_quotation_version(db, source, user)
        copy_quotation_tree(db, source.id, revision.id)
        record_activity(
            db, revision, "revision", f"Created revision v{revision.version}",
            f"Revised from v{source.version}", user=user
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create revision of quotation %s", quotation_id)
        raise HTTPException(status_code=500, detail="Failed to create revision")

    db.refresh(revision)
    return {
        "quotation": QuotationSchema.model_validate(revision),
        "message": f"Created revision v{revision.version}",
    }


@router.post("/{quotation_id}/duplicate")
def duplicate_quotation(
    quotation_id: str,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """
    Duplicate a quotation as a brand new one.

    The copy gets a new quotation_number, version 1, draft status, a fresh
    validity window and a copy of the whole tree.
    """
    original = get_tenant_quotation(db, quotation_id, user)
    now = datetime.utcnow()

    try:
        duplicate = Quotation(
            tenant_id=original.tenant_id,
            quotation_number=get_next_quotation_number(db, now),
            version=1,
            status=QuotationStatus.draft.value,
            created_by=user.id,
            updated_by=user.id,
        )
        for field in VERSIONED_FIELDS:
            setattr(duplicate, field, getattr(original, field))
        duplicate.title = f"{original.title} (Copy)" if original.title else "Quotation (Copy)"
        duplicate.valid_from = now
        duplicate.valid_until = now + timedelta(days=DEFAULT_VALIDITY_DAYS)
        duplicate.assigned_to = user.id
        db.add(duplicate)
        db.flush()

        copy_quotation_tree(db, original.id, duplicate.id)
        record_activity(
            db, duplicate, "duplicated", "Quotation duplicated",
            f"Copied from {original.quotation_number} v{original.version}", user=user
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to duplicate quotation %s", quotation_id)
        raise HTTPException(status_code=500, detail="Failed to duplicate quotation")

    db.refresh(duplicate)
    return {
        "success": True,
        "quotation": QuotationSchema.model_validate(duplicate),
        "message": "Quotation duplicated successfully",
    }


# ==================== Client Share Links ====================

@router.post("/{quotation_id}/share", response_model=ShareLink)
def create_share_link(
    quotation_id: str,
    request: Request,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Generate a client access link, replacing any previous one."""
    quotation = get_tenant_quotation(db, quotation_id, user)

    ttl_days = int(os.getenv("CLIENT_LINK_TTL_DAYS", str(DEFAULT_VALIDITY_DAYS)))
    quotation.client_access_token = secrets.token_hex(32)
    quotation.client_access_expires_at = datetime.utcnow() + timedelta(days=ttl_days)
    record_activity(db, quotation, "shared", "Client link generated", user=user)
    commit_or_500(db, "Failed to generate access link")

    return ShareLink(
        share_url=build_share_url(request, quotation.client_access_token),
        token=quotation.client_access_token,
        expires_at=quotation.client_access_expires_at,
    )


@router.get("/{quotation_id}/share", response_model=ShareLinkStatus)
def get_share_link(
    quotation_id: str,
    request: Request,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Get the current client link and its usage."""
    quotation = get_tenant_quotation(db, quotation_id, user)

    if not quotation.client_access_token:
        return ShareLinkStatus(has_share_link=False)

    expires_at = quotation.client_access_expires_at
    return ShareLinkStatus(
        has_share_link=True,
        share_url=build_share_url(request, quotation.client_access_token),
        token=quotation.client_access_token,
        expires_at=expires_at,
        is_expired=bool(expires_at and expires_at < datetime.utcnow()),
        view_count=quotation.client_view_count or 0,
        last_viewed_at=quotation.last_client_view_at,
    )


@router.delete("/{quotation_id}/share")
def revoke_share_link(
    quotation_id: str,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Revoke the client link."""
    quotation = get_tenant_quotation(db, quotation_id, user)

    quotation.client_access_token = None
    quotation.client_access_expires_at = None
    record_activity(db, quotation, "share_revoked", "Client link revoked", user=user)
    commit_or_500(db, "Failed to revoke access link")
    return {"success": True, "message": "Share link revoked"}


@router.get("/{quotation_id}/activities", response_model=List[QuotationActivitySchema])
def get_quotation_activities(
    quotation_id: str,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Get the activity log of a quotation, newest first."""
    get_tenant_quotation(db, quotation_id, user)
    return (
        db.query(QuotationActivity)
        .filter(QuotationActivity.quotation_id == quotation_id)
        .order_by(QuotationActivity.created_at.desc())
        .all()
    )
