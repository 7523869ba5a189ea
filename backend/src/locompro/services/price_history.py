"""Price history ledger kept on every offer.

Entries are plain dicts so they live in the offer's JSON column:
``{"price": 200.0, "timestamp": "2026-01-01T10:00:00+00:00", "type": "rejected"}``.
The ledger only grows; nothing here mutates or drops an existing entry.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from locompro.domain.enums import PriceHistoryType


def _as_decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def price_changed(current_price, new_price) -> bool:
    """Compare prices as decimals so 180 and 180.00 count as equal."""
    return _as_decimal(current_price) != _as_decimal(new_price)


def make_entry(
    price,
    entry_type: PriceHistoryType = PriceHistoryType.REJECTED,
    timestamp: Optional[datetime] = None,
) -> dict:
    ts = timestamp or datetime.now(timezone.utc)
    return {
        "price": float(price),
        "timestamp": ts.isoformat(),
        "type": entry_type.value,
    }


def append_if_changed(
    history: Optional[list],
    current_price,
    new_price,
    timestamp: Optional[datetime] = None,
) -> list:
    """Return a new ledger with ``current_price`` appended when the price moves.

    The input list is copied, never modified in place: the caller's ORM
    attribute must see a new object for the JSON column to be flagged dirty.
    """
    ledger = list(history or [])
    if price_changed(current_price, new_price):
        ledger.append(make_entry(current_price, PriceHistoryType.REJECTED, timestamp))
    return ledger


def negotiation_trail(history: Optional[list], current_price) -> list[dict]:
    """Ledger as shown to users: current price first, then older prices newest-first."""
    entries = sorted(history or [], key=lambda e: e.get("timestamp") or "", reverse=True)
    trail = [{"price": float(current_price), "timestamp": None, "type": "current"}]
    for entry in entries:
        trail.append({
            "price": float(entry["price"]),
            "timestamp": entry.get("timestamp"),
            "type": entry.get("type", PriceHistoryType.REJECTED.value),
        })
    return trail
