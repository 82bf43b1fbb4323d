# discount_engine/models/order.py
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator


class OrderLine(BaseModel):
    """Individual item in an order"""
    product_id: int
    category_id: Optional[int] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


class OrderContext(BaseModel):
    """Snapshot of an order handed over for pricing"""
    customer_id: Optional[int] = None
    customer_classification: Optional[str] = None
    lines: List[OrderLine] = []
    subtotal: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @model_validator(mode='after')
    def _fill_subtotal(self):
        if self.subtotal is None:
            # frozen model: bypass __setattr__ for the derived field
            object.__setattr__(self, 'subtotal', sum((line.total_price for line in self.lines), Decimal("0")))
        return self

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)
