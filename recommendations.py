"""
"Similar products" ranking.

Candidates are scored on price proximity, featured flag and availability;
out-of-stock products are kept (ranked lower) so the storefront can show
them with an "unavailable" overlay.
"""
from datetime import datetime
from typing import Any, Iterable, List, Optional

DEFAULT_LIMIT = 6
MAX_LIMIT = 20
PRICE_TOLERANCE = 0.2


def clamp_limit(raw: Any = None) -> int:
    if raw is None or raw == "":
        return DEFAULT_LIMIT
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_LIMIT
    return min(max(1, value), MAX_LIMIT)


def total_stock(product: dict) -> int:
    sizes = product.get("tailles") or []
    if sizes:
        return sum(int(s.get("stock") or 0) for s in sizes)
    return int(product.get("stock") or 0)


def _timestamp(value: Optional[datetime]) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return 0.0


def score(source: dict, candidate: dict) -> int:
    price = float(source.get("prix") or 0)
    low, high = price * (1 - PRICE_TOLERANCE), price * (1 + PRICE_TOLERANCE)

    points = 0
    if low <= float(candidate.get("prix") or 0) <= high:
        points += 2
    if candidate.get("vedette"):
        points += 1
    if total_stock(candidate) > 0:
        points += 1
    return points


def rank_similar(source: dict, candidates: Iterable[dict], limit: int = DEFAULT_LIMIT) -> List[dict]:
    source_id = source.get("_id", source.get("id"))
    pool = [c for c in candidates if c.get("_id", c.get("id")) != source_id]
    ranked = sorted(
        pool,
        key=lambda c: (score(source, c), _timestamp(c.get("created_at"))),
        reverse=True,
    )
    return ranked[:clamp_limit(limit)]
