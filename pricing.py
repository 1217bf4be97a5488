"""
Pricing engine: (vehicle daily rate, date range, add-ons) -> itemized price.

Pure functions only. Money is ``Decimal`` throughout and every rounded amount uses
ROUND_HALF_UP to two places.
"""
import math
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Sequence

from booking_schemas import AddOnResolution, DateRange, LineItem, Pricing, PriceQuote
from config import Config
from errors import InvalidRange, NotBookable, UnknownAddOn

CENT = Decimal("0.01")
ONE_DAY = timedelta(days=1)


def round2(amount) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def rental_days(date_range: DateRange) -> int:
    """Whole rental days in the range; any partial day counts as a full day."""
    days = math.ceil((date_range.end - date_range.start) / ONE_DAY)
    if days < 1:
        raise InvalidRange(
            "Booking must be at least 1 day",
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
        )
    return days


def build_line_items(add_on_refs: Sequence[str], resolution: AddOnResolution) -> List[LineItem]:
    """
    Snapshot resolved add-ons into line items, in the order they were requested.
    Repeated ids collapse into a single line item. Any id that did not resolve, or
    resolved to an add-on that is switched off, fails the whole request.
    """
    if resolution.unresolved:
        raise UnknownAddOn(
            f"Unknown add-on(s): {', '.join(resolution.unresolved)}",
            add_on_refs=list(resolution.unresolved),
        )
    by_id = {add_on.id: add_on for add_on in resolution.found}
    items = []
    seen = set()
    for ref in add_on_refs:
        if ref in seen:
            continue
        seen.add(ref)
        add_on = by_id.get(ref)
        if add_on is None:
            raise UnknownAddOn(f"Unknown add-on: {ref}", add_on_refs=[ref])
        if not add_on.is_bookable:
            raise UnknownAddOn(f"Add-on is not available: {ref}", add_on_refs=[ref])
        items.append(LineItem(add_on_ref=add_on.id, name=add_on.name, daily_rate=add_on.daily_rate, quantity=1))
    return items


def compute_price(
    daily_rate: Decimal,
    date_range: DateRange,
    add_ons: Iterable[LineItem] = (),
    tax_rate: Decimal = None,
    currency: str = None,
) -> PriceQuote:
    daily_rate = Decimal(daily_rate)
    if daily_rate <= 0:
        raise NotBookable(f"Car has no usable daily rate: {daily_rate}", daily_rate=str(daily_rate))
    tax_rate = Config.TAX_RATE if tax_rate is None else Decimal(tax_rate)

    total_days = rental_days(date_range)
    base_amount = round2(daily_rate * total_days)

    items = list(add_ons)
    add_ons_amount = Decimal("0")
    for item in items:
        if item.daily_rate is None or item.daily_rate < 0 or item.quantity < 1:
            raise UnknownAddOn(f"Add-on has no usable rate: {item.add_on_ref}", add_on_refs=[item.add_on_ref])
        add_ons_amount += item.daily_rate * total_days * item.quantity
    add_ons_amount = round2(add_ons_amount)

    tax_amount = round2((base_amount + add_ons_amount) * tax_rate)
    total_amount = round2(base_amount + add_ons_amount + tax_amount)

    return PriceQuote(
        daily_rate=daily_rate,
        pricing=Pricing(
            base_amount=base_amount,
            add_ons_amount=add_ons_amount,
            tax_amount=tax_amount,
            total_days=total_days,
        ),
        line_items=items,
        total_amount=total_amount,
        currency=currency or Config.CURRENCY,
    )
