"""
Purpose: Turns raw marketplace payloads into the canonical order / listing model.

Everything here is pure. Malformed optional fields degrade to None; a record that
has no identity or no order timestamp cannot be stored and is reported as a
MappingDefect for that record only, the rest of the batch still maps.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from channel_sync.core.exceptions import MappingDefectError
from channel_sync.integrations.base import MarketplaceOrderProvider, RawOrder, RemoteListingState
from channel_sync.integrations.platforms.shopify import ShopifyProvider
from channel_sync.schemas.listings import ListingObservation
from channel_sync.schemas.orders import CanonicalOrder, CustomerInfo, OrderLineItem

logger = logging.getLogger(__name__)


@dataclass
class MappingDefect:
    platform: str
    record_ref: Optional[str]
    reason: str


@dataclass
class MappingBatch:
    orders: List[CanonicalOrder] = field(default_factory=list)
    defects: List[MappingDefect] = field(default_factory=list)


# Safe field parsers

def dig(data: Any, *path) -> Any:
    """Walk nested dicts/lists, returning None as soon as the shape does not match."""
    for key in path:
        if isinstance(data, dict):
            data = data.get(key)
        elif isinstance(data, list) and isinstance(key, int) and -len(data) <= key < len(data):
            data = data[key]
        else:
            return None
    return data


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        return int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError):
        return None


def clean_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _dict_or_none(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) and value else None


def _join_name(*parts: Any) -> Optional[str]:
    return clean_str(" ".join(p for p in (clean_str(x) for x in parts) if p))


def _sum_items(items: List[OrderLineItem]) -> Optional[Decimal]:
    if not items or any(item.unit_price is None for item in items):
        return None
    return sum((item.unit_price * item.quantity for item in items), Decimal("0"))


def _line_item(external_item_id, sku, title, quantity, unit_price) -> OrderLineItem:
    qty = parse_int(quantity)
    return OrderLineItem(
        external_item_id=clean_str(external_item_id),
        sku=clean_str(sku),
        title=clean_str(title),
        quantity=qty if qty is not None and qty > 0 else 1,
        unit_price=parse_decimal(unit_price),
    )


# Per-platform extractors. Each returns the optional canonical fields.

def _extract_mercadolivre(payload: Dict[str, Any]) -> Dict[str, Any]:
    items = [
        _line_item(
            dig(entry, "item", "id"),
            dig(entry, "item", "seller_sku") or dig(entry, "item", "seller_custom_field"),
            dig(entry, "item", "title"),
            entry.get("quantity"),
            entry.get("unit_price"),
        )
        for entry in _as_list(payload.get("order_items")) if isinstance(entry, dict)
    ]
    buyer = payload.get("buyer")
    total = parse_decimal(payload.get("total_amount"))
    return {
        "raw_status": clean_str(payload.get("status")),
        "customer": CustomerInfo(
            name=clean_str(dig(buyer, "nickname")) or _join_name(dig(buyer, "first_name"), dig(buyer, "last_name")),
            email=clean_str(dig(buyer, "email")),
            shipping_address=_dict_or_none(dig(payload, "shipping", "receiver_address")),
        ),
        "total_value": total if total is not None else _sum_items(items),
        "currency": clean_str(payload.get("currency_id")),
        "items": items,
    }


def _extract_amazon(payload: Dict[str, Any]) -> Dict[str, Any]:
    items = []
    for entry in _as_list(payload.get("OrderItems")):
        if not isinstance(entry, dict):
            continue
        quantity = parse_int(entry.get("QuantityOrdered")) or 1
        line_total = parse_decimal(dig(entry, "ItemPrice", "Amount"))
        items.append(_line_item(
            entry.get("OrderItemId"),
            entry.get("SellerSKU"),
            entry.get("Title"),
            quantity,
            # ItemPrice is the line total
            line_total / quantity if line_total is not None else None,
        ))
    return {
        "raw_status": clean_str(payload.get("OrderStatus")),
        "customer": CustomerInfo(
            name=clean_str(dig(payload, "BuyerInfo", "BuyerName")),
            email=clean_str(dig(payload, "BuyerInfo", "BuyerEmail")),
            shipping_address=_dict_or_none(payload.get("ShippingAddress")),
        ),
        "total_value": parse_decimal(dig(payload, "OrderTotal", "Amount")),
        "currency": clean_str(dig(payload, "OrderTotal", "CurrencyCode")),
        "items": items,
    }


def _extract_shopify(payload: Dict[str, Any]) -> Dict[str, Any]:
    customer = payload.get("customer")
    items = [
        _line_item(entry.get("id"), entry.get("sku"), entry.get("title"), entry.get("quantity"), entry.get("price"))
        for entry in _as_list(payload.get("line_items")) if isinstance(entry, dict)
    ]
    return {
        "raw_status": clean_str(ShopifyProvider.native_status(payload)),
        "customer": CustomerInfo(
            name=_join_name(dig(customer, "first_name"), dig(customer, "last_name")),
            email=clean_str(dig(customer, "email")) or clean_str(payload.get("email")),
            shipping_address=_dict_or_none(payload.get("shipping_address")),
        ),
        "total_value": parse_decimal(payload.get("total_price")),
        "currency": clean_str(payload.get("currency")),
        "items": items,
    }


def _extract_shopee(payload: Dict[str, Any]) -> Dict[str, Any]:
    items = [
        _line_item(
            entry.get("item_id"),
            entry.get("model_sku") or entry.get("item_sku"),
            entry.get("item_name"),
            entry.get("model_quantity_purchased"),
            entry.get("model_discounted_price"),
        )
        for entry in _as_list(payload.get("item_list")) if isinstance(entry, dict)
    ]
    address = _dict_or_none(payload.get("recipient_address"))
    return {
        "raw_status": clean_str(payload.get("order_status")),
        "customer": CustomerInfo(
            name=clean_str(payload.get("buyer_username")) or clean_str(dig(address, "name")),
            email=None,
            shipping_address=address,
        ),
        "total_value": parse_decimal(payload.get("total_amount")),
        "currency": clean_str(payload.get("currency")),
        "items": items,
    }


def _extract_generic(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "raw_status": clean_str(payload.get("status")),
        "customer": None,
        "total_value": parse_decimal(payload.get("total")),
        "currency": clean_str(payload.get("currency")),
        "items": [],
    }


ORDER_EXTRACTORS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    "mercadolivre": _extract_mercadolivre,
    "amazon": _extract_amazon,
    "shopify": _extract_shopify,
    "shopee": _extract_shopee,
}


def map_order(raw: RawOrder, provider: MarketplaceOrderProvider) -> CanonicalOrder:
    """
    Map one raw order.

    Raises:
        MappingDefectError: missing identity or timestamp, or a payload that is not an object
    """
    external_id = clean_str(raw.external_order_id)
    if not external_id:
        raise MappingDefectError("Order has no external id", record_ref=None)
    if raw.placed_at is None:
        raise MappingDefectError("Order has no valid creation timestamp", record_ref=external_id)
    if not isinstance(raw.payload, dict):
        raise MappingDefectError("Order payload is not an object", record_ref=external_id)

    extractor = ORDER_EXTRACTORS.get(raw.platform, _extract_generic)
    try:
        fields = extractor(raw.payload)
        return CanonicalOrder(
            platform=raw.platform,
            external_order_id=external_id,
            status=provider.map_status(fields["raw_status"]),
            ordered_at=raw.placed_at,
            **fields,
        )
    except ValidationError as e:
        raise MappingDefectError(f"Order failed validation: {e}", record_ref=external_id) from e


def map_orders(raws: List[RawOrder], provider: MarketplaceOrderProvider) -> MappingBatch:
    batch = MappingBatch()
    for raw in raws:
        try:
            batch.orders.append(map_order(raw, provider))
        except MappingDefectError as e:
            logger.warning(f"Skipping {raw.platform} order {e.record_ref}: {e}")
            batch.defects.append(MappingDefect(platform=raw.platform, record_ref=e.record_ref, reason=str(e)))
    return batch


def map_listing_state(state: RemoteListingState) -> ListingObservation:
    return ListingObservation(
        platform_product_id=str(state.platform_product_id),
        remote_stock=parse_int(state.available_quantity),
        remote_status=clean_str(state.status),
        platform_url=clean_str(state.url),
    )
