# paintdesk/models.py
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

JobStatus = Literal["new", "quoted", "scheduled", "in_progress", "done", "paid", "archive"]
TemplateType = Literal["sms", "email"]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class _Address(BaseModel):
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Customers
# ──────────────────────────────────────────────────────────────────────────────
class CustomerCreate(_Address):
    company_id: str
    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_to_none(cls, value):
        return _blank_to_none(value)


class CustomerUpdate(_Address):
    """Unknown keys are dropped rather than written through."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_to_none(cls, value):
        return _blank_to_none(value)


# ──────────────────────────────────────────────────────────────────────────────
# Jobs
# ──────────────────────────────────────────────────────────────────────────────
class JobCreate(_Address):
    company_id: str
    title: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    notes: Optional[str] = None
    assigned_user_id: Optional[str] = None
    status: JobStatus = "new"


class JobUpdate(_Address):
    """
    Fields a member may change on a job.

    Anything else in the request body (company_id, tokens, ...) is ignored.
    """
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(None, min_length=1)
    notes: Optional[str] = None
    status: Optional[JobStatus] = None
    assigned_user_id: Optional[str] = None
    customer_id: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    payment_state: Optional[str] = None
    payment_amount: Optional[int] = Field(None, ge=0)
    payment_method: Optional[str] = None
    payment_paid_at: Optional[str] = None
    progress_percentage: Optional[int] = Field(None, ge=0, le=100)
    sort_order: Optional[int] = None


class MarkPaidIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_method: Optional[str] = Field(None, alias="paymentMethod")


class PaymentLineItemIn(BaseModel):
    title: str = Field(..., min_length=1)
    price: int = Field(..., ge=0)
    sort_order: Optional[int] = None


class EstimateLineItemIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    price: int = Field(0, ge=0)
    description: Optional[str] = None
    service_key: Optional[str] = None
    service_type: Optional[str] = None
    paint_color_name_or_code: Optional[str] = None
    sheen: Optional[str] = None
    product_line: Optional[str] = None
    gallons_estimate: Optional[float] = Field(None, ge=0)
    vendor_sku: Optional[str] = None
    sort_order: Optional[int] = None


class JobPaymentIn(BaseModel):
    """Proposed price for a job; also (re)issues the estimate the customer sees."""
    jobPaymentLineItems: List[PaymentLineItemIn] = []
    estimateLineItems: List[EstimateLineItemIn] = []
    totalAmount: Optional[int] = Field(None, ge=0)
    customerId: Optional[str] = None
    existingToken: Optional[str] = None


class PublicMarkPaidIn(BaseModel):
    payment_method: str = "manual"


class ProgressIn(BaseModel):
    progress_percentage: int = Field(..., ge=0, le=100)


class PhotoIn(BaseModel):
    url: str = Field(..., min_length=1)
    storage_path: Optional[str] = None
    caption: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Estimates
# ──────────────────────────────────────────────────────────────────────────────
class _PaintDetails(BaseModel):
    paint_product: Optional[str] = None
    product_line: Optional[str] = None
    color_name: Optional[str] = None
    color_code: Optional[str] = None
    sheen: Optional[str] = None
    area_description: Optional[str] = None
    vendor_sku: Optional[str] = None
    notes: Optional[str] = None


class EstimateMaterialIn(_PaintDetails):
    name: str = Field(..., min_length=1)
    quantity: float = Field(1, ge=0)
    cost_per_unit: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None


class EstimateMaterialUpdate(_PaintDetails):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    quantity: Optional[float] = Field(None, ge=0)
    cost_per_unit: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None


class DenyIn(BaseModel):
    """Customer declining an estimate or a proposed schedule."""
    reason: Optional[str] = None


class SignoffIn(BaseModel):
    name: str = Field(..., min_length=1)


class EstimateRespondIn(BaseModel):
    """Portal accept/deny addressed by the job's public token."""
    token: str = Field(..., min_length=1)
    action: Literal["accept", "deny"]
    denialReason: Optional[str] = None


# ──────────────────────────────────────────────────────────────────────────────
# Billing / affiliate
# ──────────────────────────────────────────────────────────────────────────────
class BillingCheckoutIn(BaseModel):
    referralCode: Optional[str] = None
    visitorId: Optional[str] = None


class ReferralVisitIn(BaseModel):
    code: str = Field(..., min_length=1)
    visitorId: str = Field(..., min_length=1)


class MarkCommissionsPaidIn(BaseModel):
    referralIds: List[str] = Field(..., min_length=1)


class CheckoutOut(BaseModel):
    url: str


# ──────────────────────────────────────────────────────────────────────────────
# Templates / inventory
# ──────────────────────────────────────────────────────────────────────────────
class MessageTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    type: TemplateType = "sms"
    subject: Optional[str] = None


class MessageTemplateUpdate(BaseModel):
    id: str
    name: Optional[str] = Field(None, min_length=1)
    body: Optional[str] = Field(None, min_length=1)
    type: Optional[TemplateType] = None
    subject: Optional[str] = None


class InventoryItemCreate(BaseModel):
    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    unit: Optional[str] = None
    on_hand: float = Field(0, ge=0)
    reorder_at: Optional[float] = Field(None, ge=0)
    cost_per_unit: Optional[float] = Field(None, ge=0)


class InventoryItemUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    unit: Optional[str] = None
    on_hand: Optional[float] = Field(None, ge=0)
    reorder_at: Optional[float] = Field(None, ge=0)
    cost_per_unit: Optional[float] = Field(None, ge=0)


class JobTemplateCreate(BaseModel):
    job_id: str
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    include_notes: bool = False
    include_materials: bool = False
    include_estimate_structure: bool = False


class JobTemplateUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    notes: Optional[str] = None


class UseTemplateIn(BaseModel):
    job_id: str


# ──────────────────────────────────────────────────────────────────────────────
# Companies / crew
# ──────────────────────────────────────────────────────────────────────────────
class CompanyCreate(BaseModel):
    company_name: str = Field(..., min_length=1)
    owner_name: Optional[str] = None


class CompanyUpdate(BaseModel):
    """Settings a member may edit; billing columns belong to the webhook."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, min_length=1)
    contact_phone: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    theme_id: Optional[str] = None

    @field_validator("contact_email", mode="before")
    @classmethod
    def blank_email_to_none(cls, value):
        return _blank_to_none(value)


class CompanyLinkIn(BaseModel):
    company_id: str
    user_id: str


class InviteCreate(BaseModel):
    company_id: str


class JoinIn(BaseModel):
    full_name: Optional[str] = None


class DismissReminderIn(BaseModel):
    estimateId: str = Field(..., min_length=1)


# ──────────────────────────────────────────────────────────────────────────────
# Affiliate self-service / admin
# ──────────────────────────────────────────────────────────────────────────────
class AffiliateCodeIn(BaseModel):
    code: str = Field(..., min_length=1)


class ToggleAffiliateIn(BaseModel):
    email: str = Field(..., min_length=1)


class UpdateAffiliateCodeIn(BaseModel):
    userId: str = Field(..., min_length=1)
    newCode: str = Field(..., min_length=1)
