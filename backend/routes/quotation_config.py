import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth import protect_api_route
from database import get_db
from models import SpaceType, ComponentType, ComponentVariant, CostItem, User
from routes.quotations import check_tenant_member, commit_or_500
from schemas import (
    SpaceTypeCreate, SpaceType as SpaceTypeSchema,
    ComponentTypeCreate, ComponentType as ComponentTypeSchema,
    ComponentVariantCreate, ComponentVariant as ComponentVariantSchema,
    CostItemCreate, CostItem as CostItemSchema
)


def slugify(value: str) -> str:
    """'Master Bedroom' -> 'master-bedroom'"""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def visible_to(query, model, user: User):
    """System rows (no tenant) plus the user's own tenant rows, active only."""
    return (
        query
        .filter(or_(model.tenant_id.is_(None), model.tenant_id == user.tenant_id))
        .filter(model.is_active == True)
        .order_by(model.display_order, model.name)
    )


def check_slug_available(db: Session, model, slug: str, user: User, **scope) -> None:
    """
    Raises:
        HTTPException: 400 error if the tenant (or the system) already uses the slug
    """
    existing = visible_to(db.query(model), model, user).filter(model.slug == slug)
    for column, value in scope.items():
        existing = existing.filter(getattr(model, column) == value)
    if existing.first():
        raise HTTPException(status_code=400, detail=f"'{slug}' already exists")


router = APIRouter(prefix="/quotations/config", tags=["quotation config"])


# ==================== Space Types ====================

@router.get("/space-types", response_model=List[SpaceTypeSchema])
def get_space_types(user: User = Depends(protect_api_route), db: Session = Depends(get_db)):
    """Get all space types available to the tenant."""
    return visible_to(db.query(SpaceType), SpaceType, user).all()


@router.post("/space-types", response_model=SpaceTypeSchema)
def create_space_type(
    space_type: SpaceTypeCreate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Create a tenant space type."""
    check_tenant_member(user)
    slug = space_type.slug or slugify(space_type.name)
    check_slug_available(db, SpaceType, slug, user)

    db_space_type = SpaceType(**space_type.model_dump(exclude={"slug"}), slug=slug, tenant_id=user.tenant_id)
    db.add(db_space_type)
    commit_or_500(db, "Failed to save master data")
    db.refresh(db_space_type)
    return db_space_type


# ==================== Component Types ====================

@router.get("/component-types", response_model=List[ComponentTypeSchema])
def get_component_types(user: User = Depends(protect_api_route), db: Session = Depends(get_db)):
    """Get all component types available to the tenant."""
    return visible_to(db.query(ComponentType), ComponentType, user).all()


@router.post("/component-types", response_model=ComponentTypeSchema)
def create_component_type(
    component_type: ComponentTypeCreate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Create a tenant component type."""
    check_tenant_member(user)
    slug = component_type.slug or slugify(component_type.name)
    check_slug_available(db, ComponentType, slug, user)

    db_component_type = ComponentType(
        **component_type.model_dump(exclude={"slug"}), slug=slug, tenant_id=user.tenant_id
    )
    db.add(db_component_type)
    commit_or_500(db, "Failed to save master data")
    db.refresh(db_component_type)
    return db_component_type


# ==================== Component Variants ====================

@router.get("/component-variants", response_model=List[ComponentVariantSchema])
def get_component_variants(
    component_type_id: Optional[str] = None,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Get component variants, optionally for one component type."""
    query = visible_to(db.query(ComponentVariant), ComponentVariant, user)
    if component_type_id:
        query = query.filter(ComponentVariant.component_type_id == component_type_id)
    return query.all()


@router.post("/component-variants", response_model=ComponentVariantSchema)
def create_component_variant(
    variant: ComponentVariantCreate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Create a tenant variant of a component type."""
    check_tenant_member(user)
    component_type = visible_to(db.query(ComponentType), ComponentType, user).filter(
        ComponentType.id == variant.component_type_id
    ).first()
    if not component_type:
        raise HTTPException(status_code=400, detail="Component type not found")

    slug = variant.slug or slugify(variant.name)
    check_slug_available(db, ComponentVariant, slug, user, component_type_id=component_type.id)

    db_variant = ComponentVariant(**variant.model_dump(exclude={"slug"}), slug=slug, tenant_id=user.tenant_id)
    db.add(db_variant)
    commit_or_500(db, "Failed to save master data")
    db.refresh(db_variant)
    return db_variant


# ==================== Cost Items ====================

@router.get("/cost-items", response_model=List[CostItemSchema])
def get_cost_items(user: User = Depends(protect_api_route), db: Session = Depends(get_db)):
    """Get the tenant's quotation cost items."""
    return visible_to(db.query(CostItem), CostItem, user).all()


@router.post("/cost-items", response_model=CostItemSchema)
def create_cost_item(
    cost_item: CostItemCreate,
    user: User = Depends(protect_api_route),
    db: Session = Depends(get_db)
):
    """Create a tenant cost item."""
    check_tenant_member(user)
    slug = cost_item.slug or slugify(cost_item.name)
    check_slug_available(db, CostItem, slug, user)

    db_cost_item = CostItem(**cost_item.model_dump(exclude={"slug"}), slug=slug, tenant_id=user.tenant_id)
    db.add(db_cost_item)
    commit_or_500(db, "Failed to save master data")
    db.refresh(db_cost_item)
    return db_cost_item
