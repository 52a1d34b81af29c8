"""MercadoLivre status vocabulary mapped to the canonical order status.

Every lookup is case-insensitive and table-driven. Values missing from a
table are returned unchanged: marketplace vocabularies grow faster than the
tables do, so an unknown status must never break a sync.
"""
from enum import Enum
from typing import Dict, Optional


class CanonicalStatus(str, Enum):
    PAGO = "Pago"
    CONFIRMADO = "Confirmado"
    CANCELADO = "Cancelado"
    ENVIADO = "Enviado"
    ENTREGUE = "Entregue"
    ABERTO = "Aberto"


CANONICAL_STATUS_MAP: Dict[str, CanonicalStatus] = {
    "paid": CanonicalStatus.PAGO,
    "confirmed": CanonicalStatus.CONFIRMADO,
    "cancelled": CanonicalStatus.CANCELADO,
    "shipped": CanonicalStatus.ENVIADO,
    "delivered": CanonicalStatus.ENTREGUE,
}

# Display labels for the full order status vocabulary.
STATUS_LABELS: Dict[str, str] = {
    "confirmed": "Confirmado",
    "payment_required": "Aguardando Pagamento",
    "payment_in_process": "Processando Pagamento",
    "paid": "Pago",
    "partially_paid": "Parcialmente Pago",
    "partially_refunded": "Parcialmente Reembolsado",
    "pending_cancel": "Cancelamento Pendente",
    "shipped": "Enviado",
    "delivered": "Entregue",
    "cancelled": "Cancelado",
    "invalid": "Inválido",
    "not_processed": "Não Processado",
    "pending": "Pendente",
    "active": "Ativo",
    "completed": "Concluído",
    "expired": "Expirado",
    "paused": "Pausado",
}

# Shipping sub-status: (label, description)
SUBSTATUS_LABELS: Dict[str, tuple] = {
    "pending": ("Pendente", "Aguardando processamento"),
    "handling": ("Preparando", "Preparando para envio"),
    "ready_to_ship": ("Pronto para Enviar", "Pronto para despacho"),
    "shipped": ("A Caminho", "Em transporte"),
    "delivered": ("Entregue", "Entrega concluída"),
    "not_delivered": ("Não Entregue", "Falha na entrega"),
    "cancelled": ("Cancelado", "Envio cancelado"),
    "in_transit": ("Em Trânsito", "Mercadoria em movimento"),
    "out_for_delivery": ("Saiu para Entrega", "Veículo a caminho do destino"),
    "returning_to_sender": ("Retornando ao Remetente", "Retorno ao vendedor"),
    "delivery_failed": ("Falha na Entrega", "Tentativa de entrega sem sucesso"),
    "receiver_absent": ("Destinatário Ausente", "Ninguém no local de entrega"),
    "damaged": ("Danificado", "Produto com avarias"),
    "lost": ("Perdido", "Mercadoria extraviada"),
    "delayed": ("Atrasado", "Entrega com atraso"),
    "picked_up": ("Coletado", "Retirado pelo transportador"),
    "dropped_off": ("Despachado", "Entregue ao transportador"),
    "at_customs": ("Na Alfândega", "Em processo aduaneiro"),
    "delayed_at_customs": ("Retido na Alfândega", "Retenção para verificação"),
    "left_customs": ("Liberado da Alfândega", "Desembaraço concluído"),
    "refused_delivery": ("Recusou a Entrega", "Destinatário recusou receber"),
    "waiting_for_withdrawal": ("Aguardando Retirada", "Disponível para coleta"),
    "contact_with_carrier_required": ("Contato com Transportadora Necessário", "Ação do destinatário requerida"),
    "not_localized": ("Não Localizado", "Endereço não encontrado"),
    "forwarded_to_third": ("Encaminhado para Terceiros", "Redirecionado"),
    "soon_deliver": ("Entrega em Breve", "Próximo da entrega"),
    "bad_address": ("Endereço Incorreto", "Dados de endereço inválidos"),
    "changed_address": ("Endereço Alterado", "Mudança de destino"),
    "stale": ("Parado", "Sem movimentação"),
    "claimed_me": ("Reclamado pelo Comprador", "Disputa aberta"),
    "retained": ("Retido", "Retenção administrativa"),
    "stolen": ("Roubado", "Furto/roubo reportado"),
    "returned": ("Devolvido", "Retorno completo"),
    "confiscated": ("Confiscado", "Apreendido por autoridades"),
    "destroyed": ("Destruído", "Mercadoria destruída"),
    "in_storage": ("Em Depósito", "Armazenado temporariamente"),
    "pending_recovery": ("Aguardando Recuperação", "Processo de recuperação"),
    "agency_unavailable": ("Agência Indisponível", "Local de entrega fechado"),
    "rejected_damaged": ("Rejeitado por Danos", "Recusado devido a avarias"),
    "refunded_by_delay": ("Reembolsado por Atraso", "Compensação por demora"),
    "shipment_stopped": ("Envio Parado", "Transporte interrompido"),
    "awaiting_tax_documentation": ("Aguardando Documentação Fiscal", "Pendência tributária"),
    "to_be_agreed": ("A Combinar", "Agendamento necessário"),
    "under_review": ("Em Análise", "Verificação em andamento"),
    "customs_review": ("Revisão Alfandegária", "Análise aduaneira"),
    "waiting_for_pickup": ("Aguardando Coleta", "Pronto para retirada"),
    "delivery_attempt": ("Tentativa de Entrega", "Tentando entregar"),
    "rescheduled": ("Reagendado", "Nova data marcada"),
    "on_route": ("Em Rota", "A caminho do destino"),
    "sorting_center": ("Centro de Triagem", "Em processo de separação"),
    "loaded_on_truck": ("Carregado no Caminhão", "Pronto para transporte"),
    "arrived_at_facility": ("Chegou à Unidade", "Na unidade de distribuição"),
    "departed_facility": ("Saiu da Unidade", "Deixou centro de distribuição"),
    "international_departure": ("Saída Internacional", "Deixou país de origem"),
    "international_arrival": ("Chegada Internacional", "Chegou ao país destino"),
    "processing_at_destination": ("Processando no Destino", "Preparando para entrega local"),
}

DELIVERED_STATUSES = frozenset({"delivered", "entregue"})
DELIVERED_SUBSTATUSES = frozenset({"delivered"})
PROBLEM_STATUSES = frozenset({"cancelled", "not_delivered", "invalid",
                              "cancelado", "inválido"})
PROBLEM_SUBSTATUSES = frozenset({
    "delivery_failed", "receiver_absent", "damaged", "lost",
    "refused_delivery", "not_localized", "bad_address",
    "stolen", "confiscated", "destroyed", "rejected_damaged",
})
IN_TRANSIT_STATUSES = frozenset({"shipped", "in_transit",
                                 "out_for_delivery", "enviado"})

# Canonical label -> marketplace value, used to translate UI filters.
MARKETPLACE_STATUS_BY_LABEL: Dict[str, str] = {
    status.value.lower(): raw for raw, status in CANONICAL_STATUS_MAP.items()
}


def _key(value: Optional[str]) -> str:
    return str(value).strip().lower() if value is not None else ""


def normalize_status(raw_status: Optional[str]) -> str:
    if not raw_status:
        return CanonicalStatus.ABERTO.value
    mapped = CANONICAL_STATUS_MAP.get(_key(raw_status))
    return mapped.value if mapped else raw_status


def status_label(raw_status: Optional[str]) -> str:
    if not raw_status:
        return CanonicalStatus.ABERTO.value
    return STATUS_LABELS.get(_key(raw_status), raw_status)


def normalize_substatus(raw_substatus: Optional[str]) -> Optional[str]:
    if not raw_substatus:
        return None
    entry = SUBSTATUS_LABELS.get(_key(raw_substatus))
    return entry[0] if entry else raw_substatus


def substatus_description(raw_substatus: Optional[str]) -> Optional[str]:
    if not raw_substatus:
        return None
    entry = SUBSTATUS_LABELS.get(_key(raw_substatus))
    return entry[1] if entry else None


def combined_label(raw_status: Optional[str], raw_substatus: Optional[str] = None) -> str:
    main = status_label(raw_status)
    sub = normalize_substatus(raw_substatus)
    if not sub or sub == main:
        return main
    return f"{main} • {sub}"


def is_delivered(status: Optional[str], substatus: Optional[str] = None) -> bool:
    return _key(status) in DELIVERED_STATUSES or _key(substatus) in DELIVERED_SUBSTATUSES


def is_problem(status: Optional[str], substatus: Optional[str] = None) -> bool:
    return _key(status) in PROBLEM_STATUSES or _key(substatus) in PROBLEM_SUBSTATUSES


def is_in_transit(status: Optional[str], substatus: Optional[str] = None) -> bool:
    return _key(status) in IN_TRANSIT_STATUSES or _key(substatus) in IN_TRANSIT_STATUSES


def status_tone(status: Optional[str], substatus: Optional[str] = None) -> str:
    if is_delivered(status, substatus):
        return "delivered"
    if is_problem(status, substatus):
        return "problem"
    if is_in_transit(status, substatus):
        return "in_transit"
    return "pending"


def to_marketplace_status(value: Optional[str]) -> Optional[str]:
    """Translate a canonical label ("Pago") to the marketplace value ("paid")."""
    if not value:
        return None
    return MARKETPLACE_STATUS_BY_LABEL.get(_key(value), _key(value))
