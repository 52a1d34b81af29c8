from datetime import date
from typing import Any, Dict, List, Optional
from ordersync.errors import TransformError
from ordersync.schemas.orders import CanonicalOrder, OrderLineItem
from ordersync.services.status_mapping import normalize_status
from ordersync.utils.logger import get_loggers
logger = get_loggers("OrderTransformer")

MARKETPLACE_NAME = "Mercado Livre"
FALLBACK_CUSTOMER_NAME = "Cliente ML"

BR_UF_BY_NAME = {
    "Acre": "AC", "Alagoas": "AL", "Amapá": "AP", "Amazonas": "AM", "Bahia": "BA",
    "Ceará": "CE", "Distrito Federal": "DF", "Espírito Santo": "ES", "Goiás": "GO",
    "Maranhão": "MA", "Mato Grosso": "MT", "Mato Grosso do Sul": "MS", "Minas Gerais": "MG",
    "Pará": "PA", "Paraíba": "PB", "Paraná": "PR", "Pernambuco": "PE", "Piauí": "PI",
    "Rio de Janeiro": "RJ", "Rio Grande do Norte": "RN", "Rio Grande do Sul": "RS",
    "Rondônia": "RO", "Roraima": "RR", "Santa Catarina": "SC", "São Paulo": "SP",
    "Sergipe": "SE", "Tocantins": "TO",
}


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def to_amount(value: Any, field: str = "amount", order_id: Optional[str] = None) -> float:
    if value is None or value == "":
        return 0.0
    try:
        amount = float(value)
    except (TypeError, ValueError):
        logger.warning(
            f"Order {order_id}: non-numeric {field} {value!r}, using 0")
        return 0.0
    if amount != amount or amount in (float("inf"), float("-inf")):
        logger.warning(f"Order {order_id}: invalid {field} {value!r}, using 0")
        return 0.0
    if amount < 0:
        logger.warning(f"Order {order_id}: negative {field} {value!r}, using 0")
        return 0.0
    return amount


def to_date(value: Any) -> Optional[str]:
    """Return the YYYY-MM-DD part of an ISO-8601 timestamp, or None."""
    if not isinstance(value, str) or not value.strip():
        return None
    candidate = value.strip().split("T")[0][:10]
    try:
        return date.fromisoformat(candidate).isoformat()
    except ValueError:
        return None


def derive_uf(state: Any) -> Optional[str]:
    state = _dict(state)
    state_id = state.get("id")
    if isinstance(state_id, str) and "-" in state_id:
        candidate = state_id.split("-")[-1]
        if len(candidate) == 2:
            return candidate.upper()
    name = state.get("name")
    if isinstance(name, str):
        return BR_UF_BY_NAME.get(name.strip())
    return None


def _customer_name(buyer: Dict[str, Any]) -> str:
    first = (buyer.get("first_name") or "").strip()
    last = (buyer.get("last_name") or "").strip()
    if first and last:
        return f"{first} {last}"
    nickname = (buyer.get("nickname") or "").strip()
    return nickname or FALLBACK_CUSTOMER_NAME


def _document(raw: Dict[str, Any]) -> Optional[str]:
    billing = _dict(_dict(raw.get("buyer")).get("billing_info"))
    doc = billing.get("doc_number")
    if not doc:
        doc = _dict(_dict(raw.get("buyer")).get("identification")).get("number")
    return _str_or_none(doc)


def _promised_date(shipping: Dict[str, Any]) -> Optional[str]:
    option = _dict(shipping.get("shipping_option"))
    final = _dict(option.get("estimated_delivery_final")).get("date")
    if final:
        return to_date(final)
    return to_date(_dict(option.get("estimated_delivery_time")).get("date"))


def _item_sku(entry: Dict[str, Any]) -> Optional[str]:
    item = _dict(entry.get("item"))
    sku = item.get("seller_sku") or item.get("seller_custom_field") or item.get("id")
    return _str_or_none(sku)


def transform_order_items(raw: Dict[str, Any], integration_account_id: Optional[str] = None) -> List[OrderLineItem]:
    raw = _dict(raw)
    order_id = _str_or_none(raw.get("id"))
    if order_id is None:
        raise TransformError("Order without id")
    merged: Dict[str, OrderLineItem] = {}
    for entry in _list(raw.get("order_items")):
        entry = _dict(entry)
        sku = _item_sku(entry)
        if not sku:
            logger.warning(f"Order {order_id}: line item without sku skipped")
            continue
        try:
            quantity = int(entry.get("quantity") or 1)
        except (TypeError, ValueError):
            logger.warning(
                f"Order {order_id}: invalid quantity {entry.get('quantity')!r}, using 1")
            quantity = 1
        quantity = max(quantity, 1)
        unit_price = to_amount(entry.get("unit_price"), "unit_price", order_id)
        existing = merged.get(sku)
        if existing:
            existing.quantidade += quantity
            existing.valor_total = round(
                existing.valor_total + unit_price * quantity, 2)
            continue
        merged[sku] = OrderLineItem(
            pedido_id=order_id,
            sku=sku,
            descricao=_str_or_none(_dict(entry.get("item")).get("title")),
            quantidade=quantity,
            valor_unitario=unit_price,
            valor_total=round(unit_price * quantity, 2),
            integration_account_id=integration_account_id,
        )
    return list(merged.values())


def transform_order(raw: Dict[str, Any], integration_account_id: str, today: Optional[date] = None) -> CanonicalOrder:
    raw = _dict(raw)
    order_id = _str_or_none(raw.get("id"))
    if order_id is None:
        raise TransformError("Order without id")

    shipping = _dict(raw.get("shipping_details")) or _dict(raw.get("shipping"))
    address = _dict(shipping.get("receiver_address"))
    payments = _list(raw.get("payments"))
    first_payment = _dict(payments[0]) if payments else {}

    data_pedido = to_date(raw.get("date_created"))
    if data_pedido is None:
        data_pedido = (today or date.today()).isoformat()
        logger.warning(
            f"Order {order_id}: missing date_created, using {data_pedido}")

    shipping_cost = first_payment.get("shipping_cost")
    if shipping_cost is None:
        shipping_cost = shipping.get("cost")

    items = transform_order_items(raw, integration_account_id)
    titles = [
        _dict(entry.get("item")).get("title")
        for entry in map(_dict, _list(raw.get("order_items")))
    ]
    obs = ", ".join(t for t in titles if t) or None

    return CanonicalOrder(
        id=order_id,
        numero=order_id,
        nome_cliente=_customer_name(_dict(raw.get("buyer"))),
        cpf_cnpj=_document(raw),
        data_pedido=data_pedido,
        data_prevista=_promised_date(shipping),
        situacao=normalize_status(raw.get("status")),
        status_envio=_str_or_none(shipping.get("status")),
        substatus_envio=_str_or_none(shipping.get("substatus")),
        valor_total=to_amount(raw.get("total_amount"), "total_amount", order_id),
        valor_frete=to_amount(shipping_cost, "shipping_cost", order_id),
        valor_desconto=to_amount(
            _dict(raw.get("coupon")).get("amount"), "coupon.amount", order_id),
        numero_ecommerce=_str_or_none(raw.get("pack_id")),
        numero_venda=order_id,
        empresa=MARKETPLACE_NAME,
        cidade=_str_or_none(_dict(address.get("city")).get("name")),
        uf=derive_uf(address.get("state")),
        codigo_rastreamento=_str_or_none(shipping.get("tracking_number")),
        url_rastreamento=_str_or_none(shipping.get("tracking_url")),
        obs=obs,
        integration_account_id=str(integration_account_id),
        last_updated=_str_or_none(raw.get("last_updated")),
        itens=items,
    )
