"""
Discount pricing engine.

Resolves the final unit price of a catalog item against the active discount
set. Pure functions over plain dictionaries so the same code prices carts,
catalog listings and the authoritative order transaction.

Discount records use the shape produced by
`discount_service.discount_to_record`:

    {id, name, type: 'product'|'unit', value_type: 'percentage'|'nominal'|'tiered',
     value, active, is_active_now, product_ids, unit_ids, tiers}

Items (for tiered aggregates) are `{product_id, unit_id, quantity, price}`.

Multiple matching discounts stack sequentially in the order supplied: each
one operates on the already discounted running price.
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')

PERCENTAGE = 'percentage'
NOMINAL = 'nominal'
TIERED = 'tiered'


# =====================================================
# COERCION HELPERS
# =====================================================

def _to_decimal(value: Any) -> Optional[Decimal]:
    """Convert to Decimal, None when the value is missing or not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not result.is_finite():
        return None
    return result


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        return None


def _id_set(values: Any) -> set:
    if not isinstance(values, (list, tuple, set, frozenset)):
        return set()
    return {i for i in (_to_int(v) for v in values) if i is not None}


def _normalize(value: Any) -> Optional[str]:
    return value.lower() if isinstance(value, str) else None


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# =====================================================
# MATCHING
# =====================================================

def discount_is_active(discount: Mapping) -> bool:
    """Derived schedule flag wins over the raw admin switch."""
    if not isinstance(discount, Mapping):
        return False
    if discount.get('is_active_now') is not None:
        return bool(discount['is_active_now'])
    if discount.get('active') is not None:
        return bool(discount['active'])
    return True


def discount_applies_to(discount: Mapping, product_id: Any, unit_id: Any) -> bool:
    """Check whether the item falls inside the discount's scope."""
    if not isinstance(discount, Mapping):
        return False
    scope = _normalize(discount.get('type'))
    if scope == 'product':
        pid = _to_int(product_id)
        return pid is not None and pid in _id_set(discount.get('product_ids'))
    if scope == 'unit':
        uid = _to_int(unit_id)
        return uid is not None and uid in _id_set(discount.get('unit_ids'))
    return False


# =====================================================
# TIER SELECTION
# =====================================================

def _cache_key(discount: Mapping) -> str:
    if discount.get('id') is not None:
        return f"id:{discount['id']}"
    scope = _normalize(discount.get('type')) or 'unknown'
    products = '-'.join(str(i) for i in sorted(_id_set(discount.get('product_ids'))))
    units = '-'.join(str(i) for i in sorted(_id_set(discount.get('unit_ids'))))
    return f"{scope}|p:{products}|u:{units}"


def aggregate_totals(
    discount: Mapping,
    items: Optional[Sequence[Mapping]],
    aggregate_cache: Optional[Dict[str, Dict[str, Decimal]]] = None
) -> Dict[str, Decimal]:
    """
    Sum quantity and quantity * price over every item inside the discount's scope.

    Evaluated against the whole order, not only the item being priced. The
    result is memoized in `aggregate_cache` (keyed by discount id, or by scope
    signature for unsaved discounts) for the rest of the pricing pass.
    """
    if not items:
        return {'quantity': ZERO, 'amount': ZERO}

    key = _cache_key(discount)
    if aggregate_cache is not None and key in aggregate_cache:
        return aggregate_cache[key]

    total_quantity = ZERO
    total_amount = ZERO
    for item in items:
        if not isinstance(item, Mapping):
            continue
        if not discount_applies_to(discount, item.get('product_id'), item.get('unit_id')):
            continue
        quantity = _to_decimal(item.get('quantity')) or ZERO
        price = _to_decimal(item.get('price')) or ZERO
        total_quantity += quantity
        total_amount += quantity * price

    result = {'quantity': total_quantity, 'amount': total_amount}
    if aggregate_cache is not None:
        aggregate_cache[key] = result
    return result


def _within(total: Decimal, lower: Optional[Decimal], upper: Optional[Decimal]) -> bool:
    if lower is not None and total < lower:
        return False
    if upper is not None and total > upper:
        return False
    return True


def tier_matches(tier: Mapping, totals: Mapping) -> bool:
    """
    A tier matches when every bound pair it sets contains the aggregate.

    Unset bounds are unbounded. A tier with no bounds at all never matches.
    """
    if not isinstance(tier, Mapping):
        return False

    min_qty = _to_decimal(tier.get('min_quantity'))
    max_qty = _to_decimal(tier.get('max_quantity'))
    min_amount = _to_decimal(tier.get('min_amount'))
    max_amount = _to_decimal(tier.get('max_amount'))

    has_quantity_bounds = min_qty is not None or max_qty is not None
    has_amount_bounds = min_amount is not None or max_amount is not None
    if not has_quantity_bounds and not has_amount_bounds:
        return False

    if has_quantity_bounds and not _within(totals.get('quantity') or ZERO, min_qty, max_qty):
        return False
    if has_amount_bounds and not _within(totals.get('amount') or ZERO, min_amount, max_amount):
        return False
    return True


def _tier_sort_key(tier: Mapping):
    return (_to_int(tier.get('priority')) or 0, _to_int(tier.get('id')) or 0)


def select_tier(tiers: Any, totals: Mapping) -> Optional[Mapping]:
    """
    Pick the tier to apply for the given aggregate totals.

    Tiers are walked by (priority, id) ascending and the LAST matching tier
    wins, so a higher priority number overrides lower ones.
    """
    if not isinstance(tiers, (list, tuple)) or not tiers:
        return None

    candidates = [t for t in tiers if isinstance(t, Mapping)]
    selected = None
    for tier in sorted(candidates, key=_tier_sort_key):
        if tier_matches(tier, totals):
            selected = tier
    return selected


# =====================================================
# RESOLUTION
# =====================================================

def _apply_value(price: Decimal, value_type: Optional[str], raw_value: Any) -> Optional[Decimal]:
    """Apply one percentage or nominal step; None when the entry is malformed."""
    value = _to_decimal(raw_value if raw_value is not None else 0)
    if value is None:
        return None
    if value_type == PERCENTAGE:
        if value < ZERO or value > HUNDRED:
            return None
        return price - (price * value / HUNDRED)
    if value_type == NOMINAL:
        if value < ZERO:
            return None
        return max(ZERO, price - value)
    return None


def resolve_item_price(
    original_price: Any,
    product_id: Any,
    unit_id: Any,
    discounts: Optional[Sequence[Mapping]],
    items: Optional[Sequence[Mapping]] = None,
    aggregate_cache: Optional[Dict[str, Dict[str, Decimal]]] = None
) -> Dict[str, Any]:
    """
    Resolve the final unit price of one item.

    Returns a tagged result:
        applied: the final price differs from the original price
        price: final unit price (the original when nothing applied)
        discount_amount: original - final
        matched_discount_ids: discounts in scope, including those that
            ended up contributing nothing (e.g. no tier matched)
    """
    base = _to_decimal(original_price)
    if base is None:
        base = ZERO
    base = quantize_money(base)

    result = {
        'applied': False,
        'price': base,
        'discount_amount': ZERO,
        'matched_discount_ids': [],
    }
    if not discounts:
        return result

    matching = [
        d for d in discounts
        if discount_is_active(d) and discount_applies_to(d, product_id, unit_id)
    ]
    if not matching:
        return result

    price = base
    for discount in matching:
        result['matched_discount_ids'].append(discount.get('id'))
        value_type = _normalize(discount.get('value_type'))

        if value_type == TIERED:
            totals = aggregate_totals(discount, items, aggregate_cache)
            tier = select_tier(discount.get('tiers'), totals)
            if tier is None:
                continue
            stepped = _apply_value(price, _normalize(tier.get('value_type')), tier.get('value'))
        else:
            stepped = _apply_value(price, value_type, discount.get('value'))

        if stepped is None:
            logger.debug(f"[PRICING] Skipping malformed discount {discount.get('id')}")
            continue
        price = stepped

    final_price = quantize_money(max(ZERO, price))
    if final_price != base:
        result['applied'] = True
        result['price'] = final_price
        result['discount_amount'] = base - final_price
    return result


def resolve_price(
    original_price: Any,
    product_id: Any,
    unit_id: Any,
    discounts: Optional[Sequence[Mapping]],
    items: Optional[Sequence[Mapping]] = None,
    aggregate_cache: Optional[Dict[str, Dict[str, Decimal]]] = None
) -> Optional[Decimal]:
    """Final discounted price, or None when no discount changes the price."""
    resolution = resolve_item_price(original_price, product_id, unit_id, discounts, items, aggregate_cache)
    return resolution['price'] if resolution['applied'] else None


# =====================================================
# PRICING PASSES
# =====================================================

def price_items(items: Sequence[Mapping], discounts: Optional[Sequence[Mapping]]) -> List[Dict[str, Any]]:
    """
    Price every item of one cart/order with a shared aggregate cache.

    Each returned line carries the original item fields plus `unit_price`,
    `final_price`, `discount_amount`, `line_total` and `discount_applied`.
    """
    aggregate_cache: Dict[str, Dict[str, Decimal]] = {}
    lines = []
    for item in items or []:
        resolution = resolve_item_price(
            item.get('price'),
            item.get('product_id'),
            item.get('unit_id'),
            discounts,
            items=items,
            aggregate_cache=aggregate_cache
        )
        quantity = _to_int(item.get('quantity')) or 0
        line = dict(item)
        line.update({
            'unit_price': quantize_money(_to_decimal(item.get('price')) or ZERO),
            'final_price': resolution['price'],
            'discount_amount': resolution['discount_amount'],
            'discount_applied': resolution['applied'],
            'line_total': quantize_money(resolution['price'] * quantity),
        })
        lines.append(line)
    return lines


def total_of(lines: Sequence[Mapping]) -> Decimal:
    """Sum of `line_total` over lines already returned by `price_items`."""
    return sum((line['line_total'] for line in lines), ZERO)


def calculate_total(items: Sequence[Mapping], discounts: Optional[Sequence[Mapping]]) -> Decimal:
    """Total after discounts."""
    return total_of(price_items(items, discounts))


def calculate_original_total(items: Sequence[Mapping]) -> Decimal:
    """Total before discounts."""
    total = ZERO
    for item in items or []:
        price = _to_decimal(item.get('price')) or ZERO
        quantity = _to_int(item.get('quantity')) or 0
        total += price * quantity
    return quantize_money(total)


def subtotals_by_unit(items: Sequence[Mapping], discounts: Optional[Sequence[Mapping]]) -> List[tuple]:
    """Discounted subtotals grouped by unit name (falling back to product name)."""
    grouped: Dict[str, Decimal] = {}
    for line in price_items(items, discounts):
        key = line.get('unit_name') or line.get('product_name') or 'Lainnya'
        grouped[key] = grouped.get(key, ZERO) + line['line_total']
    return list(grouped.items())
