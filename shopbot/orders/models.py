from typing import List, Optional
from pydantic import BaseModel


class CheckoutDetails(BaseModel):
    """Contact snapshot collected by the checkout flow."""
    full_name: str
    phone: str
    address: str
    postal_code: Optional[str] = None
    customer_notes: Optional[str] = None


class LowStockItem(BaseModel):
    product_id: int
    name: str
    stock: int


class PlacedOrder(BaseModel):
    order_id: int
    tracking_code: str
    total_price: int
    discount_amount: int
    tax_amount: int
    final_price: int
    low_stock: List[LowStockItem] = []


class CheckoutOutcome(BaseModel):
    order: PlacedOrder
    discount_dropped_reason: Optional[str] = None
    discount_applied: bool = False


class CancelledOrder(BaseModel):
    order_id: int
    user_id: int
    tracking_code: str
    reason: Optional[str] = None
    restored_items: int = 0
