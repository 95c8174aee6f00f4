from pydantic import BaseModel
from typing import Optional
from decimal import Decimal
from datetime import datetime

class QuotationItemBase(BaseModel):
    part_id: int
    quantity: int
    discount: Optional[Decimal] = None # Line discount percent; defaults to the catalog discount, overriding it is seller only
    notes: Optional[str] = None

class QuotationItemCreateRequest(QuotationItemBase):
    # unit_price is never accepted from the client; it is snapshotted from the catalog
    pass

class QuotationItemUpdate(BaseModel):
    quantity: Optional[int] = None
    discount: Optional[Decimal] = None
    notes: Optional[str] = None

class QuotationItem(QuotationItemBase):
    id: int
    quotation_id: int
    unit_price: Decimal
    list_price: Optional[Decimal] = None
    total_price: Decimal
    backordered_quantity: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
