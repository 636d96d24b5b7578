from pydantic import AliasChoices, BaseModel, Field, validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum


class QuotationStatus(str, Enum):
    draft = "draft"
    sent = "sent"
    viewed = "viewed"
    negotiating = "negotiating"
    approved = "approved"
    rejected = "rejected"
    expired = "expired"


# ===== User Schemas =====
class UserSummary(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True


# ===== Master Data Schemas =====
class MasterDataBase(BaseModel):
    name: str
    slug: Optional[str] = None  # Derived from name when omitted
    display_order: int = 0

    @validator('name')
    def name_must_not_be_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Name is required')
        return v.strip()


class SpaceTypeCreate(MasterDataBase):
    icon: Optional[str] = None


class SpaceType(SpaceTypeCreate):
    id: str
    tenant_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class ComponentTypeCreate(MasterDataBase):
    icon: Optional[str] = None


class ComponentType(ComponentTypeCreate):
    id: str
    tenant_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class ComponentVariantCreate(MasterDataBase):
    component_type_id: str
    description: Optional[str] = None


class ComponentVariant(ComponentVariantCreate):
    id: str
    tenant_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class CostItemCreate(MasterDataBase):
    description: Optional[str] = None
    unit_code: Optional[str] = None
    default_rate: float = 0.0
    company_cost: Optional[float] = None
    vendor_cost: Optional[float] = None


class CostItem(CostItemCreate):
    id: str
    tenant_id: Optional[str] = None
    is_active: bool = True

    class Config:
        from_attributes = True


# ===== Quotation Tree Rows (read side) =====
class QuotationSpaceRow(BaseModel):
    id: str
    quotation_id: str
    space_type_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    subtotal: float = 0.0
    display_order: int = 0
    space_type: Optional[SpaceType] = None

    class Config:
        from_attributes = True


class QuotationComponentRow(BaseModel):
    id: str
    quotation_id: str
    space_id: Optional[str] = None
    component_type_id: Optional[str] = None
    component_variant_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    subtotal: float = 0.0
    display_order: int = 0
    component_type: Optional[ComponentType] = None

    class Config:
        from_attributes = True


class QuotationLineItemRow(BaseModel):
    id: str
    quotation_id: str
    quotation_space_id: Optional[str] = None
    quotation_component_id: Optional[str] = None
    quotation_cost_item_id: Optional[str] = None
    name: Optional[str] = None
    length: Optional[float] = None
    width: Optional[float] = None
    quantity: Optional[float] = None
    unit_code: Optional[str] = None
    rate: Optional[float] = None
    amount: Optional[float] = None
    measurement_unit: Optional[str] = None
    display_order: int = 0
    notes: Optional[str] = None
    # ORM attribute is item_metadata; API payloads use "metadata"
    metadata: Optional[Dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("item_metadata", "metadata")
    )
    quotation_cost_item: Optional[CostItem] = None

    class Config:
        from_attributes = True


# ===== Quotation Tree Input (write side) =====
class LineItemIn(BaseModel):
    quotation_space_id: Optional[str] = None  # Only honoured by the flat lineItems path
    quotation_component_id: Optional[str] = None  # Only honoured by the flat lineItems path
    quotation_cost_item_id: Optional[str] = None
    cost_item_id: Optional[str] = None  # Legacy name for quotation_cost_item_id
    name: Optional[str] = None
    length: Optional[float] = None
    width: Optional[float] = None
    quantity: Optional[float] = None
    unit_code: Optional[str] = None
    rate: Optional[float] = None
    amount: Optional[float] = None
    measurement_unit: Optional[str] = None
    display_order: Optional[int] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ComponentIn(BaseModel):
    component_type_id: Optional[str] = None
    component_variant_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    subtotal: Optional[float] = None
    sort_order: Optional[int] = None
    line_items: List[LineItemIn] = Field(default_factory=list, alias="lineItems")

    class Config:
        populate_by_name = True


class SpaceIn(BaseModel):
    space_type_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    subtotal: Optional[float] = None
    sort_order: Optional[int] = None
    components: List[ComponentIn] = []
    line_items: List[LineItemIn] = Field(default_factory=list, alias="lineItems")  # Items directly on the space

    class Config:
        populate_by_name = True


# ===== Quotation Schemas =====
class QuotationHeader(BaseModel):
    """Scalar quotation fields that a PATCH may change."""
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[QuotationStatus] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    subtotal: Optional[float] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    discount_amount: Optional[float] = None
    taxable_amount: Optional[float] = None
    tax_percent: Optional[float] = None
    tax_amount: Optional[float] = None
    overhead_percent: Optional[float] = None
    overhead_amount: Optional[float] = None
    grand_total: Optional[float] = None
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    presentation_level: Optional[str] = None
    hide_dimensions: Optional[bool] = None
    assigned_to: Optional[str] = None
    template_id: Optional[str] = None


class QuotationCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    lead_id: Optional[str] = None
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    valid_until: Optional[datetime] = None
    tax_percent: float = 18.0
    assigned_to: Optional[str] = None


class QuotationUpdate(QuotationHeader):
    spaces: Optional[List[SpaceIn]] = None
    line_items: Optional[List[LineItemIn]] = Field(default=None, alias="lineItems")
    create_new_version: bool = False
    version_notes: Optional[str] = None

    class Config:
        populate_by_name = True


class QuotationStatusUpdate(BaseModel):
    status: Optional[str] = None  # Validated in route so bad values map to 400
    notes: Optional[str] = None


class QuotationVersion(BaseModel):
    id: str
    version: int
    status: str
    grand_total: Optional[float] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Quotation(BaseModel):
    id: str
    tenant_id: str
    quotation_number: str
    version: int
    parent_quotation_id: Optional[str] = None
    status: str
    lead_id: Optional[str] = None
    project_id: Optional[str] = None
    client_id: Optional[str] = None
    template_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    subtotal: Optional[float] = None
    discount_type: Optional[str] = None
    discount_value: Optional[float] = None
    discount_amount: Optional[float] = None
    taxable_amount: Optional[float] = None
    tax_percent: Optional[float] = None
    tax_amount: Optional[float] = None
    overhead_percent: Optional[float] = None
    overhead_amount: Optional[float] = None
    grand_total: Optional[float] = None
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    presentation_level: Optional[str] = None
    hide_dimensions: Optional[bool] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    class Config:
        from_attributes = True


class QuotationDetail(Quotation):
    assigned_user: Optional[UserSummary] = None
    created_user: Optional[UserSummary] = None
    updated_user: Optional[UserSummary] = None


class QuotationList(BaseModel):
    quotations: List[Quotation]
    total: int
    limit: int
    offset: int


# ===== Sharing / Client Portal Schemas =====
class ShareLink(BaseModel):
    share_url: str
    token: str
    expires_at: datetime


class ShareLinkStatus(BaseModel):
    has_share_link: bool
    share_url: Optional[str] = None
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_expired: bool = False
    view_count: int = 0
    last_viewed_at: Optional[datetime] = None


class ClientRejection(BaseModel):
    reason: Optional[str] = None


# ===== Activity Schemas =====
class QuotationActivity(BaseModel):
    id: str
    quotation_id: str
    activity_type: str
    title: str
    description: Optional[str] = None
    performed_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
