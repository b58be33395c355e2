import hashlib
from collections import OrderedDict
from typing import Dict, Iterable, Sequence, Tuple
from uuid import UUID


def idempotency_lock_key(ikey: str) -> int:
    h = hashlib.sha256(ikey.encode()).digest()[:8]
    val = int.from_bytes(h, "big", signed=False)
    # convert to signed 64-bit
    if val > (1 << 63) - 1:
        val = val - (1 << 64)
    return val


def merge_cart_items(cart_items: Iterable[Tuple[int, int]]) -> Dict[int, int]:
    """Collapse repeated variants into one line each, ordered by variant id."""
    merged: Dict[int, int] = {}
    for variant_id, quantity in cart_items:
        merged[variant_id] = merged.get(variant_id, 0) + quantity
    return OrderedDict(sorted(merged.items()))


def build_external_checkout_url(shop_domain: str, lines: Sequence, checkout_public_id: UUID) -> str:
    shop = shop_domain.replace(".myshopify.com", "")
    cart = ",".join(f"{line.external_variant_id}:{line.quantity}" for line in lines)
    return f"https://{shop}.myshopify.com/cart/{cart}?checkout[note]={checkout_public_id}"
