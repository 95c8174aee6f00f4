from pydantic import BaseModel
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from models.part_items import PartItemCondition, PartItemStatus

class PartItemBase(BaseModel):
    part_id: int
    bar_code: str
    serial_number: Optional[str] = None
    location: Optional[str] = None
    shelve_location: Optional[str] = None
    supplier_id: Optional[int] = None
    purchase_price: Optional[Decimal] = None
    purchase_date: Optional[datetime] = None
    warranty_period: Optional[int] = None # in months
    condition: PartItemCondition = PartItemCondition.NEW
    notes: Optional[str] = None

class PartItemCreate(PartItemBase):
    # Units are registered unclaimed; reserved and sold are only set by the reservation ledger
    status: PartItemStatus = PartItemStatus.AVAILABLE

class PartItemBulkCreate(BaseModel):
    items: List[PartItemCreate]

class PartItemUpdate(BaseModel):
    serial_number: Optional[str] = None
    location: Optional[str] = None
    shelve_location: Optional[str] = None
    condition: Optional[PartItemCondition] = None
    status: Optional[PartItemStatus] = None
    notes: Optional[str] = None

class PartItem(PartItemBase):
    id: int
    status: PartItemStatus
    quotation_id: Optional[int] = None
    added_by: Optional[str] = None
    added_on: datetime
    updated_on: Optional[datetime] = None

    class Config:
        from_attributes = True

class StockSummary(BaseModel):
    part_id: int
    available: int
    reserved: int
    sold: int
    damaged: int
    maintenance: int
    total: int
