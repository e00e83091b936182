import enum
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Index, Integer, Text, UniqueConstraint, Uuid
from sqlmodel import Column, SQLModel, Field, String
from uuid6 import uuid7
from shopbot.common.utils import now


def _str_enum(enum_cls, length: int = 32):
    # persist the lowercase value ("pending"), not the member name
    return Enum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=length)


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    REJECTED = "rejected"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Users(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(sa_column=Column(BigInteger, unique=True, index=True, nullable=False))
    username: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    first_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    last_name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    is_blocked: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    is_admin: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


class Category(SQLModel, table=True):
    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    icon: Optional[str] = Field(default=None, sa_column=Column(String(16), nullable=True))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    sort_order: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


class Product(SQLModel, table=True):
    __tablename__ = "products"

    id: Optional[int] = Field(default=None, primary_key=True)
    # deactivating a category does not touch its products; hard delete is refused while referenced
    category_id: int = Field(sa_column=Column(ForeignKey("categories.id", ondelete="RESTRICT"), index=True, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    price: int = Field(sa_column=Column(BigInteger, nullable=False))
    discount_price: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    stock: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    is_featured: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    sold_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    view_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        Index("ix_products_category_active", "category_id", "is_active"),
    )

    @property
    def effective_price(self) -> int:
        if self.discount_price is not None and self.discount_price < self.price:
            return self.discount_price
        return self.price


class CartItem(SQLModel, table=True):
    __tablename__ = "cart"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    product_id: int = Field(sa_column=Column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_quantity_positive"),
    )


class Orders(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))

    # contact snapshot taken at submission, decoupled from later profile edits
    full_name: str = Field(sa_column=Column(String(255), nullable=False))
    phone: str = Field(sa_column=Column(String(20), nullable=False))
    address: str = Field(sa_column=Column(Text(), nullable=False))
    postal_code: Optional[str] = Field(default=None, sa_column=Column(String(10), nullable=True))

    total_price: int = Field(sa_column=Column(BigInteger, nullable=False))
    discount_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    tax_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    final_price: int = Field(sa_column=Column(BigInteger, nullable=False))

    status: OrderStatus = Field(default=OrderStatus.PENDING,
        sa_column=Column(_str_enum(OrderStatus), nullable=False, default=OrderStatus.PENDING, index=True))
    payment_status: OrderPaymentStatus = Field(default=OrderPaymentStatus.UNPAID,
        sa_column=Column(_str_enum(OrderPaymentStatus), nullable=False, default=OrderPaymentStatus.UNPAID))
    tracking_code: str = Field(sa_column=Column(String(40), unique=True, index=True, nullable=False))
    discount_code_id: Optional[int] = Field(default=None,
        sa_column=Column(ForeignKey("discount_codes.id", ondelete="SET NULL"), nullable=True))
    customer_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))

    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


class OrderItem(SQLModel, table=True):
    """Immutable snapshot of a product at order time; survives later product edits and deletion."""
    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False))
    product_id: Optional[int] = Field(default=None,
        sa_column=Column(ForeignKey("products.id", ondelete="SET NULL"), nullable=True))
    product_name: str = Field(sa_column=Column(String(255), nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price: int = Field(sa_column=Column(BigInteger, nullable=False))
    discount_price: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_item_product"),
    )


class DiscountCode(SQLModel, table=True):
    __tablename__ = "discount_codes"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(sa_column=Column(String(20), unique=True, index=True, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    discount_type: DiscountType = Field(default=DiscountType.PERCENTAGE,
        sa_column=Column(_str_enum(DiscountType, 16), nullable=False, default=DiscountType.PERCENTAGE))
    discount_value: int = Field(sa_column=Column(BigInteger, nullable=False))
    min_purchase: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    max_discount: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    usage_limit: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    used_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    start_date: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    end_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))


class DiscountUsage(SQLModel, table=True):
    """Append-only redemption record. order_id stays nullable for pre-checkout reservations."""
    __tablename__ = "discount_usage"

    id: Optional[int] = Field(default=None, primary_key=True)
    discount_code_id: int = Field(sa_column=Column(ForeignKey("discount_codes.id", ondelete="CASCADE"), nullable=False))
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    order_id: Optional[int] = Field(default=None,
        sa_column=Column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True))
    used_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    # the actual one-use-per-user guarantee; the repository pre-check only words the message
    __table_args__ = (
        UniqueConstraint("discount_code_id", "user_id", name="uq_discount_usage_code_user"),
    )


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7,
        sa_column=Column(Uuid(), unique=True, index=True, nullable=False, default=uuid7))
    order_id: int = Field(sa_column=Column(ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False))
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False))
    amount: int = Field(sa_column=Column(BigInteger, nullable=False))
    status: PaymentStatus = Field(default=PaymentStatus.PENDING,
        sa_column=Column(_str_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING, index=True))
    payment_method: str = Field(default="manual", sa_column=Column(String(32), nullable=False, default="manual"))
    receipt_image: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    submitted_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    verified_by: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    verified_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    admin_notes: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
