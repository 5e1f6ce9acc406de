"""Competitor price input for the pricing engine."""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from shopwarden.core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Competitor:
    seller: str
    price: float
    stock: Optional[int] = None  # None = marketplace does not expose stock

    @property
    def is_active(self) -> bool:
        """Listed with a price and not known to be out of stock."""
        return self.price > 0 and (self.stock is None or self.stock > 0)

    def is_low_stock(self, units: int) -> bool:
        return self.stock is not None and self.stock < units


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_stock(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        # Some marketplaces only say "in stock"; treat that as plenty.
        return None if value else 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_competitor(raw: Mapping[str, Any]) -> Competitor:
    """Build a Competitor from one marketplace row, tolerating field spellings."""
    stock = raw.get("stock")
    if stock is None:
        stock = raw.get("hasStock")
    return Competitor(
        seller=str(raw.get("seller") or raw.get("merchantName") or "unknown"),
        price=_to_float(raw.get("price") or raw.get("salePrice") or 0),
        stock=_to_stock(stock),
    )


def normalize_competitors(response: Any) -> List[Competitor]:
    """Turn a ``{success, data: [...]}`` response into Competitor records."""
    if isinstance(response, Mapping):
        if not response.get("success"):
            return []
        rows = response.get("data") or []
    else:
        rows = response or []
    return [normalize_competitor(row) for row in rows if isinstance(row, Mapping)]


async def fetch_competitors(
    get_competitor_prices: Callable[[str], Any],
    barcode: str,
) -> List[Competitor]:
    """Query a competitor-price source. Failures are logged and yield no competitors."""
    try:
        response = get_competitor_prices(barcode)
        if inspect.isawaitable(response):
            response = await response
    except Exception as exc:
        logger.error("Competitor fetch failed for %s: %s", barcode, exc)
        return []
    competitors = normalize_competitors(response)
    logger.debug("Fetched %d competitors for %s", len(competitors), barcode)
    return competitors


def summarize(competitors: Iterable[Competitor]) -> Optional[Dict[str, Any]]:
    """Cheapest / average / most expensive active price, or None without prices."""
    prices = [c.price for c in competitors if c.is_active]
    if not prices:
        return None
    return {
        "seller_count": len(prices),
        "cheapest": min(prices),
        "average": sum(prices) / len(prices),
        "most_expensive": max(prices),
    }
