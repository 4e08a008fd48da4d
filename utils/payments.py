from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

from utils.errors import UnresolvablePrice
from utils.logger import get_logger

logger = get_logger()


@dataclass(frozen=True)
class TokenPackage:
    key: str
    tokens: int


# Declaration order matters: substring matching picks the first hit.
TOKEN_PACKAGES: Tuple[TokenPackage, ...] = (
    TokenPackage(key="7000_tokens", tokens=7000),
    TokenPackage(key="40000_tokens", tokens=40000),
    TokenPackage(key="100000_tokens", tokens=100000),
    TokenPackage(key="price_1R4cZ22NO6PNHfEnEhmEzX2y", tokens=7000),
    TokenPackage(key="price_1R4cZj2NO6PNHfEn4XiPU4tI", tokens=40000),
    TokenPackage(key="price_1R4caA2NO6PNHfEncTFmFBd4", tokens=100000),
)

# (inclusive upper bound in currency units, tokens); None closes the table.
PRICE_TIERS: Tuple[Tuple[Optional[float], int], ...] = (
    (10, 7000),
    (50, 40000),
    (None, 100000),
)


@dataclass(frozen=True)
class PriceQuery:
    price_key: str
    metadata: Mapping[str, Any]
    unit_price: Optional[float]


PriceRule = Callable[[PriceQuery], Optional[int]]


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def exact_match(query: PriceQuery) -> Optional[int]:
    for package in TOKEN_PACKAGES:
        if package.key == query.price_key:
            return package.tokens
    return None


def substring_match(query: PriceQuery) -> Optional[int]:
    if not query.price_key:
        return None
    for package in TOKEN_PACKAGES:
        if package.key in query.price_key:
            return package.tokens
    return None


def metadata_tokens(query: PriceQuery) -> Optional[int]:
    return _positive_int((query.metadata or {}).get("tokens"))


def price_tier(query: PriceQuery) -> Optional[int]:
    if query.unit_price is None or query.unit_price < 0:
        return None
    for ceiling, tokens in PRICE_TIERS:
        if ceiling is None or query.unit_price <= ceiling:
            return tokens
    return None


PRICE_RULES: Tuple[Tuple[str, PriceRule], ...] = (
    ("exact", exact_match),
    ("substring", substring_match),
    ("metadata", metadata_tokens),
    ("price_tier", price_tier),
)


def resolve_tokens(
    price_key: str,
    metadata: Optional[Mapping[str, Any]] = None,
    unit_price: Optional[float] = None,
    *,
    rules: Sequence[Tuple[str, PriceRule]] = PRICE_RULES,
) -> int:
    """Map a price key to the number of tokens it grants.

    ``unit_price`` is expressed in major currency units (dollars, not cents).
    Rules are tried in order and the first positive answer wins.
    """
    query = PriceQuery(price_key=price_key or "", metadata=metadata or {}, unit_price=unit_price)
    for name, rule in rules:
        tokens = rule(query)
        if tokens:
            logger.info("Resolved price %s to %s tokens via %s rule", price_key, tokens, name)
            return tokens

    logger.error("Failed to determine token amount for price ID: %s", price_key)
    raise UnresolvablePrice(priceId=price_key)


def cents_to_units(amount_cents: Any) -> Optional[float]:
    if amount_cents is None:
        return None
    try:
        return int(amount_cents) / 100
    except (TypeError, ValueError):
        return None

