import pytest

from ordersync.services.status_mapping import (CANONICAL_STATUS_MAP, combined_label, is_delivered,
                                               is_in_transit, is_problem, normalize_status,
                                               normalize_substatus, status_label, status_tone,
                                               substatus_description, to_marketplace_status)


@pytest.mark.parametrize("raw, expected", [
    ("paid", "Pago"),
    ("confirmed", "Confirmado"),
    ("cancelled", "Cancelado"),
    ("shipped", "Enviado"),
    ("delivered", "Entregue"),
    ("PAID", "Pago"),
])
def test_normalize_status_known_values(raw, expected):
    assert normalize_status(raw) == expected


def test_normalize_status_empty_and_unknown():
    assert normalize_status(None) == "Aberto"
    assert normalize_status("") == "Aberto"
    assert normalize_status("payment_required") == "payment_required"


def test_canonical_map_covers_all_labels():
    assert {s.value for s in CANONICAL_STATUS_MAP.values()} == {
        "Pago", "Confirmado", "Cancelado", "Enviado", "Entregue"}


def test_status_label_uses_display_vocabulary():
    assert status_label("payment_required") == "Aguardando Pagamento"
    assert status_label("unheard_of") == "unheard_of"
    assert status_label(None) == "Aberto"


def test_substatus_normalization():
    assert normalize_substatus(None) is None
    assert normalize_substatus("") is None
    assert normalize_substatus("damaged") == "Danificado"
    assert normalize_substatus("brand_new_substatus") == "brand_new_substatus"
    assert substatus_description("lost") == "Mercadoria extraviada"
    assert substatus_description("brand_new_substatus") is None


def test_combined_label():
    assert combined_label("shipped", "in_transit") == "Enviado • Em Trânsito"
    assert combined_label("shipped") == "Enviado"
    assert combined_label("delivered", "delivered") == "Entregue"


def test_predicates():
    assert is_delivered("paid", "delivered")
    assert is_delivered("Entregue")
    assert is_problem("shipped", "damaged")
    assert is_problem("Cancelado")
    assert not is_problem("shipped")
    assert is_in_transit("shipped")
    assert is_in_transit("paid", "out_for_delivery")


@pytest.mark.parametrize("status, substatus, tone", [
    ("cancelled", "delivered", "delivered"),
    ("shipped", "lost", "problem"),
    ("shipped", None, "in_transit"),
    ("paid", None, "pending"),
])
def test_status_tone_precedence(status, substatus, tone):
    assert status_tone(status, substatus) == tone


def test_to_marketplace_status():
    assert to_marketplace_status("Pago") == "paid"
    assert to_marketplace_status("cancelado") == "cancelled"
    assert to_marketplace_status("paid") == "paid"
    assert to_marketplace_status("payment_required") == "payment_required"
    assert to_marketplace_status(None) is None
