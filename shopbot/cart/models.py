from typing import List, Optional
from pydantic import BaseModel


class CartLine(BaseModel):
    product_id: int
    name: str
    quantity: int
    price: int
    discount_price: Optional[int] = None
    stock: int
    is_active: bool = True
    image_url: Optional[str] = None

    @property
    def unit_price(self) -> int:
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


class CartSummary(BaseModel):
    lines: List[CartLine] = []

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines
