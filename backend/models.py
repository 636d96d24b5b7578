from sqlalchemy import (
    Column, Integer, String, Float, ForeignKey, DateTime, Boolean, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid

from database import Base


def new_id() -> str:
    """Opaque primary key for tenant data (UUID4 string)."""
    return str(uuid.uuid4())


class QuotationStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    viewed = "viewed"
    negotiating = "negotiating"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


class UserStatus(str, enum.Enum):
    active = "active"
    disabled = "disabled"
    deleted = "deleted"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    status = Column(String, default=UserStatus.active.value, nullable=False)
    is_super_admin = Column(Boolean, default=False)
    api_token_hash = Column(String(64), unique=True, nullable=True)  # sha256 hex of the bearer token
    created_at = Column(DateTime, default=datetime.utcnow)


# ===== Master data (tenant_id NULL = shared system row) =====

class SpaceType(Base):
    __tablename__ = "space_types"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    icon = Column(String, nullable=True)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)


class ComponentType(Base):
    __tablename__ = "component_types"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    icon = Column(String, nullable=True)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    variants = relationship("ComponentVariant", back_populates="component_type", cascade="all, delete-orphan")


class ComponentVariant(Base):
    __tablename__ = "component_variants"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    component_type_id = Column(String(36), ForeignKey('component_types.id', ondelete='CASCADE'), nullable=False)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    description = Column(String, nullable=True)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    component_type = relationship("ComponentType", back_populates="variants")


class CostItem(Base):
    __tablename__ = "quotation_cost_items"

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    description = Column(String, nullable=True)
    unit_code = Column(String, nullable=True)  # "sqft", "rft", "nos", ...
    default_rate = Column(Float, default=0.0)
    company_cost = Column(Float, nullable=True)
    vendor_cost = Column(Float, nullable=True)
    display_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)


# ===== Quotations =====

class Quotation(Base):
    __tablename__ = "quotations"
    __table_args__ = (
        UniqueConstraint('quotation_number', 'version', name='uq_quotation_number_version'),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    tenant_id = Column(String(36), nullable=False, index=True)
    quotation_number = Column(String, nullable=False, index=True)  # Shared across all versions
    version = Column(Integer, nullable=False, default=1)
    parent_quotation_id = Column(String(36), ForeignKey('quotations.id', ondelete='SET NULL'), nullable=True)
    status = Column(String, nullable=False, default=QuotationStatus.draft.value)

    # Pipeline references (owned by the lead/project services)
    lead_id = Column(String(36), nullable=True, index=True)
    project_id = Column(String(36), nullable=True)
    client_id = Column(String(36), nullable=True)
    template_id = Column(String(36), nullable=True)

    title = Column(String, nullable=True)
    description = Column(String, nullable=True)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    # Monetary breakdown
    subtotal = Column(Float, default=0.0)
    discount_type = Column(String, nullable=True)  # "percentage" or "fixed"
    discount_value = Column(Float, default=0.0)
    discount_amount = Column(Float, default=0.0)
    taxable_amount = Column(Float, default=0.0)
    tax_percent = Column(Float, default=18.0)
    tax_amount = Column(Float, default=0.0)
    overhead_percent = Column(Float, default=0.0)
    overhead_amount = Column(Float, default=0.0)
    grand_total = Column(Float, default=0.0)

    payment_terms = Column(String, nullable=True)
    terms_and_conditions = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    presentation_level = Column(String, nullable=True)  # "space", "component" or "line_item"
    hide_dimensions = Column(Boolean, default=False)

    assigned_to = Column(String(36), ForeignKey('users.id'), nullable=True)
    created_by = Column(String(36), ForeignKey('users.id'), nullable=True)
    updated_by = Column(String(36), ForeignKey('users.id'), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Status timestamps
    sent_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(String, nullable=True)

    # Client share link
    client_access_token = Column(String(64), unique=True, nullable=True)
    client_access_expires_at = Column(DateTime, nullable=True)
    client_view_count = Column(Integer, default=0)
    last_client_view_at = Column(DateTime, nullable=True)

    # Relationships
    assigned_user = relationship("User", foreign_keys=[assigned_to])
    created_user = relationship("User", foreign_keys=[created_by])
    updated_user = relationship("User", foreign_keys=[updated_by])
    spaces = relationship("QuotationSpace", back_populates="quotation", order_by="QuotationSpace.display_order")
    activities = relationship("QuotationActivity", back_populates="quotation", order_by="QuotationActivity.created_at")


class QuotationSpace(Base):
    __tablename__ = "quotation_spaces"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_id = Column(String(36), ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True)
    space_type_id = Column(String(36), ForeignKey('space_types.id'), nullable=True)
    name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    subtotal = Column(Float, default=0.0)
    display_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    quotation = relationship("Quotation", back_populates="spaces")
    space_type = relationship("SpaceType")
    components = relationship("QuotationComponent", back_populates="space", passive_deletes=True)


class QuotationComponent(Base):
    __tablename__ = "quotation_components"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_id = Column(String(36), ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True)
    space_id = Column(String(36), ForeignKey('quotation_spaces.id', ondelete='CASCADE'), nullable=True)
    component_type_id = Column(String(36), ForeignKey('component_types.id'), nullable=True)
    component_variant_id = Column(String(36), ForeignKey('component_variants.id'), nullable=True)
    name = Column(String, nullable=True)
    description = Column(String, nullable=True)
    subtotal = Column(Float, default=0.0)
    display_order = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    space = relationship("QuotationSpace", back_populates="components")
    component_type = relationship("ComponentType")
    component_variant = relationship("ComponentVariant")


class QuotationLineItem(Base):
    __tablename__ = "quotation_line_items"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_id = Column(String(36), ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True)
    quotation_space_id = Column(String(36), ForeignKey('quotation_spaces.id', ondelete='SET NULL'), nullable=True)
    quotation_component_id = Column(String(36), ForeignKey('quotation_components.id', ondelete='SET NULL'), nullable=True)
    quotation_cost_item_id = Column(String(36), ForeignKey('quotation_cost_items.id'), nullable=True)
    name = Column(String, nullable=True)
    length = Column(Float, nullable=True)
    width = Column(Float, nullable=True)
    quantity = Column(Float, default=1.0)
    unit_code = Column(String, nullable=True)
    rate = Column(Float, default=0.0)
    amount = Column(Float, default=0.0)
    measurement_unit = Column(String, default="mm")
    display_order = Column(Integer, default=0)
    notes = Column(String, nullable=True)
    item_metadata = Column("metadata", JSON, nullable=True)  # "metadata" is reserved on declarative classes
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    quotation_cost_item = relationship("CostItem")


class QuotationActivity(Base):
    __tablename__ = "quotation_activities"

    id = Column(String(36), primary_key=True, default=new_id)
    quotation_id = Column(String(36), ForeignKey('quotations.id', ondelete='CASCADE'), nullable=False, index=True)
    activity_type = Column(String, nullable=False)  # "created", "updated", "status_changed", "revision", ...
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    performed_by = Column(String(36), ForeignKey('users.id'), nullable=True)  # NULL for client portal actions
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    quotation = relationship("Quotation", back_populates="activities")
