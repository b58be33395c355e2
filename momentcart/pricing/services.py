"""Offer pricing over integer minor units.

Every amount here is an int in the currency's minor unit (cents); no floats ever
touch a price. Percentages round half-up.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence
from momentcart.common.errors import CurrencyMismatch, InvalidOffer
from momentcart.common.utils import now
from momentcart.schema.full_schema import Offer, OfferStatus, OfferType


@dataclass(frozen=True)
class CartLine:
    variant_id: int
    quantity: int
    unit_price: int
    currency: str
    external_variant_id: str = ""
    title: str = ""


@dataclass
class PricedLine:
    variant_id: int
    quantity: int
    unit_price: int
    offer_price: int  # display only; amounts come from line_total
    external_variant_id: str = ""
    title: str = ""
    # share of the cart discount; line totals sum to the cart total
    line_discount: int = 0

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity

    @property
    def line_total(self) -> int:
        return self.subtotal - self.line_discount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "external_variant_id": self.external_variant_id,
            "title": self.title,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "offer_price": self.offer_price,
            "line_discount": self.line_discount,
            "line_total": self.line_total,
        }


@dataclass
class PricedCart:
    subtotal: int
    discount: int
    total: int
    currency: str
    lines: List[PricedLine] = field(default_factory=list)


def round_half_up_div(numerator: int, denominator: int) -> int:
    return (numerator + denominator // 2) // denominator


def _percent_of(amount: int, percent: int) -> int:
    return round_half_up_div(amount * percent, 100)


def allocate_discount(line_subtotals: Sequence[int], discount: int) -> List[int]:
    """Split `discount` over lines in proportion to their subtotals.

    Largest remainder; ties go to the earlier line. Shares sum to `discount`.
    """
    subtotal = sum(line_subtotals)
    if subtotal == 0 or discount == 0:
        return [0] * len(line_subtotals)
    shares = [amount * discount // subtotal for amount in line_subtotals]
    remainders = [amount * discount % subtotal for amount in line_subtotals]
    leftover = discount - sum(shares)
    for i in sorted(range(len(shares)), key=lambda i: (-remainders[i], i))[:leftover]:
        shares[i] += 1
    return shares


class PricingCalculator:

    def __init__(self, clock: Callable[[], datetime] = now):
        self.clock = clock

    def ensure_offer_usable(self, offer: Offer, at: datetime) -> None:
        if offer.status != OfferStatus.ACTIVE:
            raise InvalidOffer(f"Offer is {offer.status.value}", {"offer_id": str(offer.public_id)})
        if offer.starts_at is not None and at < offer.starts_at:
            raise InvalidOffer("Offer has not started", {"offer_id": str(offer.public_id)})
        if offer.ends_at is not None and at >= offer.ends_at:
            raise InvalidOffer("Offer has ended", {"offer_id": str(offer.public_id)})
        if offer.offer_type == OfferType.PERCENTAGE_OFF and not 0 <= offer.value <= 100:
            raise InvalidOffer("Percentage must be between 0 and 100", {"offer_id": str(offer.public_id)})
        if offer.value < 0:
            raise InvalidOffer("Offer value must not be negative", {"offer_id": str(offer.public_id)})

    def discount_for(self, offer: Offer, subtotal: int, total_qty: int) -> int:
        if offer.offer_type == OfferType.PERCENTAGE_OFF:
            raw = _percent_of(subtotal, offer.value)
        elif offer.offer_type == OfferType.FIXED_AMOUNT_OFF:
            raw = offer.value * total_qty
        elif offer.offer_type == OfferType.FIXED_PRICE:
            raw = subtotal - offer.value * total_qty
        elif offer.offer_type == OfferType.BUNDLE:
            raw = subtotal - offer.value
        else:
            raise InvalidOffer(f"Unsupported offer type {offer.offer_type}")
        return max(0, min(raw, subtotal))

    def offer_unit_price(self, offer: Offer, unit_price: int) -> int:
        if offer.offer_type == OfferType.PERCENTAGE_OFF:
            return unit_price - _percent_of(unit_price, offer.value)
        if offer.offer_type == OfferType.FIXED_AMOUNT_OFF:
            return max(0, unit_price - offer.value)
        if offer.offer_type == OfferType.FIXED_PRICE:
            return min(unit_price, offer.value)
        # bundle discounts apply to the cart as a whole
        return unit_price

    def price(self, offer: Offer, cart_items: Sequence[CartLine], at: datetime | None = None) -> PricedCart:
        at = at or self.clock()
        self.ensure_offer_usable(offer, at)

        if not cart_items:
            raise InvalidOffer("Cart is empty")

        currencies = {item.currency for item in cart_items}
        if len(currencies) > 1:
            raise CurrencyMismatch("Cart items use different currencies", {"currencies": sorted(currencies)})
        currency = currencies.pop()

        subtotal = sum(item.unit_price * item.quantity for item in cart_items)
        total_qty = sum(item.quantity for item in cart_items)
        discount = self.discount_for(offer, subtotal, total_qty)
        shares = allocate_discount([item.unit_price * item.quantity for item in cart_items], discount)

        lines = [
            PricedLine(
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                offer_price=self.offer_unit_price(offer, item.unit_price),
                external_variant_id=item.external_variant_id,
                title=item.title,
                line_discount=share,
            )
            for item, share in zip(cart_items, shares)
        ]
        return PricedCart(subtotal=subtotal, discount=discount, total=subtotal - discount, currency=currency, lines=lines)
