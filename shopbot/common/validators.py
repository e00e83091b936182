"""Field rules for everything a user types into the bot.

Predicates (`is_valid_*`) answer yes/no. Parsers (`parse_*`) normalize the raw reply and raise
InputError with the corrective message the current step re-prompts with.
"""
import re
from typing import Callable, Optional, TypeVar

from shopbot.common.constants import SKIP_SENTINEL
from shopbot.common.exceptions import InputError

T = TypeVar("T")

# Persian and Arabic-Indic digits typed on mobile keyboards
_DIGITS = str.maketrans("۰۱۲۳۴۵۶۷۸۹٠١٢٣٤٥٦٧٨٩", "01234567890123456789")

PHONE_RE = re.compile(r"^0?9[0-9]{9}$")
POSTAL_CODE_RE = re.compile(r"^[0-9]{10}$")
NAME_RE = re.compile(r"^[\u0600-\u06FF\u200ca-zA-Z\s]{2,}$")
DISCOUNT_CODE_RE = re.compile(r"^[A-Z0-9]{3,20}$")
URL_RE = re.compile(r"^https?://\S+$")

MAX_TEXT_LEN = 1000
MIN_ADDRESS_LEN = 10


def to_ascii_digits(text: str) -> str:
    return text.translate(_DIGITS)


def is_skip(text: Optional[str]) -> bool:
    """The one place that knows the skip sentinel."""
    return text is not None and to_ascii_digits(text.strip()) == SKIP_SENTINEL


def parse_optional(text: str, parser: Callable[[str], T]) -> Optional[T]:
    """None for the skip sentinel, otherwise whatever `parser` makes of the reply."""
    if is_skip(text):
        return None
    return parser(text)


def sanitize_text(text: Optional[str], max_length: int = MAX_TEXT_LEN) -> str:
    if not text:
        return ""
    return re.sub(r"[<>]", "", text).strip()[:max_length]


def format_phone(phone: Optional[str]) -> str:
    if not phone:
        return ""
    cleaned = re.sub(r"[^0-9]", "", to_ascii_digits(phone))
    if cleaned.startswith("98"):
        return "0" + cleaned[2:]
    return cleaned if cleaned.startswith("0") else "0" + cleaned


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_RE.match(phone or ""))


def is_valid_postal_code(postal_code: str) -> bool:
    return bool(POSTAL_CODE_RE.match(to_ascii_digits(postal_code or "")))


def is_valid_name(name: str) -> bool:
    if not name or len(name.strip()) < 2:
        return False
    return bool(NAME_RE.match(name.strip()))


def is_valid_address(address: str) -> bool:
    return bool(address) and len(address.strip()) >= MIN_ADDRESS_LEN


def is_valid_discount_code(code: str) -> bool:
    return bool(DISCOUNT_CODE_RE.match(code or ""))


def _parse_int(text: str) -> Optional[int]:
    cleaned = to_ascii_digits((text or "").strip()).replace(",", "").replace("٬", "")
    if not re.fullmatch(r"-?[0-9]+", cleaned):
        return None
    return int(cleaned)


def parse_name(text: str) -> str:
    if not is_valid_name(text):
        raise InputError("❌ نام وارد شده معتبر نیست. لطفاً دوباره تلاش کنید:")
    return sanitize_text(text)


def parse_phone(text: str) -> str:
    phone = format_phone(text)
    if not is_valid_phone(phone):
        raise InputError("❌ شماره تلفن معتبر نیست. لطفاً دوباره وارد کنید:")
    return phone


def parse_address(text: str) -> str:
    if not is_valid_address(text):
        raise InputError(f"❌ آدرس باید حداقل {MIN_ADDRESS_LEN} کاراکتر باشد:")
    return sanitize_text(text)


def parse_postal_code(text: str) -> str:
    code = to_ascii_digits((text or "").strip())
    if not is_valid_postal_code(code):
        raise InputError("❌ کد پستی باید 10 رقم باشد:")
    return code


def parse_price(text: str) -> int:
    value = _parse_int(text)
    if value is None or value <= 0:
        raise InputError("❌ قیمت معتبر نیست. یک عدد مثبت وارد کنید:")
    return value


def parse_stock(text: str) -> int:
    value = _parse_int(text)
    if value is None or value < 0:
        raise InputError("❌ موجودی معتبر نیست. یک عدد صحیح (صفر یا بیشتر) وارد کنید:")
    return value


def parse_positive_int(text: str) -> int:
    value = _parse_int(text)
    if value is None or value <= 0:
        raise InputError("❌ عدد معتبر نیست. یک عدد صحیح مثبت وارد کنید:")
    return value


def parse_non_negative_int(text: str) -> int:
    value = _parse_int(text)
    if value is None or value < 0:
        raise InputError("❌ عدد معتبر نیست:")
    return value


def parse_discount_code(text: str) -> str:
    code = to_ascii_digits((text or "").strip()).upper()
    if not is_valid_discount_code(code):
        raise InputError("❌ کد تخفیف فقط شامل حروف انگلیسی و اعداد (3 تا 20 کاراکتر) است:")
    return code


def parse_text(text: str, min_length: int = 1, max_length: int = MAX_TEXT_LEN) -> str:
    cleaned = sanitize_text(text, max_length)
    if len(cleaned) < min_length:
        raise InputError(f"❌ متن باید حداقل {min_length} کاراکتر باشد:")
    return cleaned


def parse_title(text: str) -> str:
    return parse_text(text, min_length=2, max_length=255)


def parse_image_ref(text: str) -> str:
    """An http(s) URL or a gateway file id taken from an uploaded photo."""
    ref = (text or "").strip()
    if not ref or " " in ref or (ref.startswith("http") and not URL_RE.match(ref)):
        raise InputError("❌ لینک تصویر معتبر نیست. یک عکس بفرستید یا لینک http وارد کنید:")
    return ref
