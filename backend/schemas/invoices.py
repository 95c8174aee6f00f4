from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

class InvoiceItem(BaseModel):
    id: int
    invoice_id: int
    quotation_item_id: Optional[int] = None
    part_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal
    total_price: Decimal
    serial_numbers: Optional[List[str]] = None
    bar_codes: Optional[List[str]] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True

class Invoice(BaseModel):
    id: int
    invoice_number: str
    quotation_id: int
    company_id: Optional[int] = None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    due_date: Optional[datetime] = None
    payment_status: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    items: List[InvoiceItem] = []

    class Config:
        from_attributes = True

class InvoiceStatusStatistics(BaseModel):
    payment_status: str
    count: int
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal

class OverdueStatistics(BaseModel):
    count: int
    balance_amount: Decimal

class InvoiceStatistics(BaseModel):
    by_status: List[InvoiceStatusStatistics]
    overdue: OverdueStatistics
