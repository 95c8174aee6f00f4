from pydantic import BaseModel, EmailStr
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from models.quotations import QuotationStatus
from schemas.quotation_items import QuotationItem, QuotationItemCreateRequest

class QuotationBase(BaseModel):
    company_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None

class QuotationCreate(QuotationBase):
    # Seller-only fields; rejected for other roles when non-empty
    internal_notes: Optional[str] = None
    discount_percent: Optional[Decimal] = Decimal("0")
    shipping_amount: Optional[Decimal] = Decimal("0")
    valid_until: Optional[datetime] = None
    items: List[QuotationItemCreateRequest] = []

class QuotationUpdate(BaseModel):
    company_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[EmailStr] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    internal_notes: Optional[str] = None
    discount_percent: Optional[Decimal] = None
    shipping_amount: Optional[Decimal] = None
    valid_until: Optional[datetime] = None

class QuotationCancel(BaseModel):
    reason: Optional[str] = None

class Quotation(QuotationBase):
    id: int
    quotation_number: str
    status: QuotationStatus
    subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    valid_until: datetime
    internal_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    confirmed_by: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    invoiced_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    items: List[QuotationItem] = []
    # Only returned once, when an anonymous buyer creates the quotation
    access_token: Optional[str] = None

    class Config:
        from_attributes = True

class QuotationPage(BaseModel):
    items: List[Quotation]
    page: int
    limit: int
    total: int
    total_pages: int

class QuotationStatistics(BaseModel):
    status: QuotationStatus
    count: int
    total_amount: Decimal

class PricePreviewLine(BaseModel):
    part_id: int
    quantity: int
    discount: Optional[Decimal] = None

class PricePreviewRequest(BaseModel):
    lines: List[PricePreviewLine] = []
    company_id: Optional[int] = None
    discount_percent: Optional[Decimal] = Decimal("0")
    shipping_amount: Optional[Decimal] = Decimal("0")

class PricePreviewLineResult(BaseModel):
    part_id: int
    quantity: int
    unit_price: Decimal
    list_price: Optional[Decimal] = None
    discount: Decimal
    total_price: Decimal

class PricePreview(BaseModel):
    lines: List[PricePreviewLineResult]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    total_savings: Decimal
