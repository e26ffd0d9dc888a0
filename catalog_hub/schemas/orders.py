from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator


def _check_quantities(v):
    if v is None:
        return None
    out = {}
    for product_id, qty in v.items():
        key = str(product_id).strip()
        if not key:
            raise ValueError("product id must not be blank")
        if qty < 0:
            raise ValueError(f"quantity for {key} must not be negative")
        out[key] = qty
    return out


class OrderCreate(BaseModel):
    # product id -> quantity; only products carried by the link are accepted
    quantities: Dict[str, int]

    @field_validator('quantities')
    @classmethod
    def valid_quantities(cls, v):
        v = _check_quantities(v)
        if not any(qty > 0 for qty in v.values()):
            raise ValueError("at least one product needs a quantity")
        return v


class OrderUpdate(BaseModel):
    status: Optional[str] = None
    updated_quantities: Optional[Dict[str, int]] = Field(default=None, alias="updatedQuantities")

    class Config:
        populate_by_name = True

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @field_validator('updated_quantities')
    @classmethod
    def valid_quantities(cls, v):
        return _check_quantities(v)
