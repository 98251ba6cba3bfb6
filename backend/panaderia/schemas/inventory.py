from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class RawMaterialCreate(BaseModel):
    name: str
    unit: str
    quantity: Decimal = Decimal("0")
    minimum: Decimal = Decimal("0")
    supplier: str | None = None
    expiration_date: date | None = None
    is_active: bool = True


class RawMaterialUpdate(BaseModel):
    name: str
    unit: str
    minimum: Decimal = Decimal("0")
    supplier: str | None = None
    expiration_date: date | None = None
    is_active: bool = True


class RestockRequest(BaseModel):
    quantity: Decimal
    reason: str | None = None


class MovementCreate(BaseModel):
    item_id: int
    movement_type: str
    quantity: Decimal
    reason: str | None = None
