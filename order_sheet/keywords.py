"""Keyword tables shared by the locator, normalizer, mapping engine and output builder.

All matching is case-insensitive substring matching on the trimmed text.
"""

from __future__ import annotations

from typing import Iterable

# ── Header-row scoring (category, weight, needles) ────────────────────────────
HEADER_CATEGORIES = (
    ("product", 10, ("상품", "제품", "품목", "product", "item", "goods", "商品")),
    ("quantity", 10, ("수량", "qty", "quantity", "数量")),
    ("price", 10, ("가격", "단가", "price", "cost", "价格")),
    ("customer", 8, ("고객", "주문자", "이름", "수령인", "customer", "buyer", "name")),
    ("phone", 8, ("연락", "전화", "휴대폰", "phone", "tel", "mobile")),
    ("address", 8, ("주소", "배송", "address", "shipping")),
    ("email", 5, ("이메일", "email", "e-mail")),
)
SHORT_TEXT_WEIGHT = 1
SHORT_TEXT_MAX_LEN = 10

# ── Sheet-name scoring ────────────────────────────────────────────────────────
SHEET_PREFERRED = ("sheet", "data", "order", "데이터", "주문")
SHEET_PENALISED = ("summary", "pivot", "요약", "피벗")
SHEET_PREFERRED_BONUS = 10
SHEET_PENALTY = 20

# ── Field semantics ───────────────────────────────────────────────────────────
DATE_TIME_KEYWORDS = (
    "날짜", "시간", "일시", "시각", "접수일", "주문일", "발주일", "배송일",
    "등록일", "수정일", "완료일", "처리일", "입력일",
    "date", "time", "datetime", "timestamp", "created", "updated",
)
QUANTITY_KEYWORDS = ("수량", "개수", "qty", "quantity")
PRICE_KEYWORDS = ("단가", "가격", "금액", "공급가액", "총액", "price", "amount", "total", "cost")
AMOUNT_TOTAL_KEYWORDS = ("금액", "공급가액", "총액", "amount", "total")
PRODUCT_KEYWORDS = ("품목", "상품", "제품", "product", "item")


def contains_any(text: object, needles: Iterable[str]) -> bool:
    if text is None:
        return False
    lowered = str(text).strip().lower()
    if not lowered:
        return False
    return any(needle.lower() in lowered for needle in needles)


def is_date_field(name: object) -> bool:
    return contains_any(name, DATE_TIME_KEYWORDS)


def is_quantity_field(name: object) -> bool:
    return contains_any(name, QUANTITY_KEYWORDS)


def is_price_field(name: object) -> bool:
    return contains_any(name, PRICE_KEYWORDS)


def is_amount_total_field(name: object) -> bool:
    return contains_any(name, AMOUNT_TOTAL_KEYWORDS)


def is_product_field(name: object) -> bool:
    return contains_any(name, PRODUCT_KEYWORDS)
