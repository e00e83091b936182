import enum
from typing import Optional


class ShopBotError(Exception):
    """Base for every error the bot raises on purpose."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InputError(ShopBotError):
    """User input failed a field rule; the current step re-prompts."""


class BusinessRuleError(ShopBotError):
    """A user-visible rejection. The flow re-prompts or falls back to a safe view."""


class EmptyCartError(BusinessRuleError):
    def __init__(self, message: str = "🛒 سبد خرید شما خالی است!"):
        super().__init__(message)


class InsufficientStockError(BusinessRuleError):
    def __init__(self, product_id: int, product_name: Optional[str] = None, requested: int = 0, available: int = 0):
        name = product_name or f"#{product_id}"
        super().__init__(f"❌ موجودی محصول {name} کافی نیست")
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available


class NotFoundError(BusinessRuleError):
    pass


class InvalidTransitionError(BusinessRuleError):
    pass


class PermissionDeniedError(BusinessRuleError):
    pass


class DiscountRejection(str, enum.Enum):
    INVALID_OR_EXPIRED = "invalid_or_expired"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    MIN_PURCHASE_NOT_MET = "min_purchase_not_met"
    ALREADY_USED = "already_used"


class DiscountRejected(BusinessRuleError):
    def __init__(self, reason: DiscountRejection, message: str, min_purchase: Optional[int] = None):
        super().__init__(message)
        self.reason = reason
        self.min_purchase = min_purchase


class GatewayError(ShopBotError):
    """The messaging gateway failed or answered ok=false."""

    def __init__(self, message: str = "", status_code: Optional[int] = None, method: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.method = method


class GatewayUnavailable(GatewayError):
    pass


class GatewayAuthError(GatewayError):
    pass
