from __future__ import annotations

import calendar
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

COMMON_DATE_FORMATS: tuple[str, ...] = (
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%b %d %Y",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%d-%m-%Y",
    "%d.%m.%Y",
)

CURRENCY_SYMBOLS: dict[str, str] = {
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
}

PUBLIC_EMAIL_PROVIDERS: frozenset[str] = frozenset({"gmail", "yahoo", "hotmail", "outlook"})

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")


def split_lines(text: str) -> list[str]:
    return [line.strip() for line in text.split("\n") if line.strip()]


def parse_amount(value: str | None) -> Decimal | None:
    if value is None:
        return None
    text = value.strip().replace(",", "").replace(" ", "")
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def decimal_places(value: str) -> int:
    text = value.strip().replace(",", "")
    if "." not in text:
        return 0
    return len(text.rsplit(".", 1)[1])


def parse_date(value: str | None, date_format: str | None = None) -> date | None:
    if not value:
        return None
    text = " ".join(value.split())
    formats = ((date_format,) if date_format else ()) + COMMON_DATE_FORMATS
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_currency(value: str | None) -> str | None:
    if not value:
        return None
    text = value.strip()
    if text in CURRENCY_SYMBOLS:
        return CURRENCY_SYMBOLS[text]
    code = text.upper()
    if len(code) == 3 and code.isalpha():
        return code
    return None


def is_valid_email(value: str | None) -> bool:
    return bool(value) and EMAIL_RE.match(value.strip()) is not None


def email_domain_label(email: str | None) -> str | None:
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip()
    label = domain.split(".", 1)[0]
    return label or None


def _alnum_lower(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


def edit_distance(left: str, right: str) -> int:
    previous = list(range(len(right) + 1))
    for i, lch in enumerate(left, start=1):
        current = [i]
        for j, rch in enumerate(right, start=1):
            if lch == rch:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def string_similarity(left: str, right: str) -> float:
    if left == right:
        return 1.0
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - edit_distance(left, right) / longest


def names_consistent(vendor_name: str, domain_label: str) -> bool:
    vendor = _alnum_lower(vendor_name)
    domain = _alnum_lower(domain_label)
    return vendor in domain or domain in vendor or string_similarity(vendor, domain) > 0.7


def shift_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return value.replace(year=value.year + years, day=28)


def shift_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    year, month = divmod(index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return date(year, month + 1, day)
