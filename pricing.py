"""
Pricing calculator shared by quotation editing and order-line review.

Lines are plain mappings (as stored in MongoDB) or pydantic models; only
``unit_price``/``price`` and ``quantity`` are read.
"""

from typing import Any, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple


class Totals(NamedTuple):
    subtotal: float
    final_amount: float


def _get(line: Any, key: str, default=None):
    if isinstance(line, dict):
        return line.get(key, default)
    return getattr(line, key, default)


def _unit_price(line: Any) -> Optional[float]:
    price = _get(line, "unit_price")
    if price is None:
        # order items carry a snapshot "price" instead of a quoted unit price
        price = _get(line, "price")
    return price


def line_total(line: Any) -> Optional[float]:
    """unit_price x quantity, or None while the line has no price."""
    price = _unit_price(line)
    if price is None:
        return None
    return float(price) * int(_get(line, "quantity", 0))


def calculate_totals(lines: Iterable[Any], discount: float = 0, delivery_fee: float = 0) -> Totals:
    """Recompute subtotal and final amount.

    subtotal = sum((unit_price or 0) * quantity); final_amount is clamped at 0.
    """
    subtotal = 0.0
    for line in lines:
        subtotal += float(_unit_price(line) or 0) * int(_get(line, "quantity", 0))
    final_amount = max(0.0, subtotal - float(discount or 0) + float(delivery_fee or 0))
    return Totals(subtotal=subtotal, final_amount=final_amount)


def clamp_quantity(requested: int, stock: Optional[int], name: str = "product") -> Tuple[int, Optional[str]]:
    """Clamp a catalog line quantity to available stock.

    Returns the effective quantity and a warning message when clamping
    happened. ``stock=None`` means the product is not stock-tracked.
    """
    if stock is None or requested <= stock:
        return requested, None
    effective = max(int(stock), 0)
    return effective, f"Quantity for {name} reduced from {requested} to {effective} (available stock)"


def find_duplicate_lines(lines: Sequence[Any]) -> Set[int]:
    """Indices of every repeated line after its first occurrence.

    Catalog lines repeat on ``product_id``; custom lines (``product_id`` is
    None) repeat on their trimmed, case-insensitive ``name``.
    """
    seen_ids: Set[str] = set()
    seen_names: Set[str] = set()
    duplicates: Set[int] = set()
    for index, line in enumerate(lines):
        product_id = _get(line, "product_id")
        if product_id is not None:
            if product_id in seen_ids:
                duplicates.add(index)
            seen_ids.add(product_id)
            continue
        key = (_get(line, "name") or "").strip().casefold()
        if key in seen_names:
            duplicates.add(index)
        seen_names.add(key)
    return duplicates


def with_line_totals(lines: Iterable[dict]) -> List[dict]:
    """Copy of ``lines`` with ``total_price`` recomputed on each line."""
    out = []
    for line in lines:
        updated = dict(line)
        updated["total_price"] = line_total(updated)
        out.append(updated)
    return out
