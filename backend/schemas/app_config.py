from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

class AppConfigBase(BaseModel):
    name: str
    value: str

    @field_validator("name")
    @classmethod
    def normalize_name(cls, name: str) -> str:
        # Setting names are matched case-sensitively against QuotationSettings.CONFIG_KEYS
        return name.strip().upper()

class AppConfigCreate(AppConfigBase):
    pass

class AppConfigUpdate(BaseModel):
    value: str

class AppConfigOut(AppConfigBase):
    id: int
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
