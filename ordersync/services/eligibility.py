from dataclasses import dataclass
from typing import Any, Dict, Optional

STOCK_MARKER = "[ESTOQUE_BAIXADO]"
CANCEL_MARKER = "[CANCELAMENTO_REGISTRADO]"

FINAL_STATE_REASONS = {
    "Entregue": "Pedido já foi entregue",
    "Cancelado": "Pedido já foi cancelado",
    "Devolvido": "Pedido já foi devolvido",
    "Reembolsado": "Pedido já foi reembolsado",
}
STOCK_ALLOWED = ("Pago", "Aprovado")
CANCEL_BLOCKED = {"Enviado": "Pedido já foi enviado"}


@dataclass(frozen=True)
class Eligibility:
    eligible: bool
    reason: Optional[str] = None


ELIGIBLE = Eligibility(True)


def has_marker(order: Dict[str, Any], marker: str) -> bool:
    return marker in (order.get("obs_interna") or "")


def append_marker(obs_interna: Optional[str], marker: str) -> str:
    if obs_interna and marker in obs_interna:
        return obs_interna
    return f"{obs_interna} {marker}".strip() if obs_interna else marker


def stock_eligibility(order: Dict[str, Any]) -> Eligibility:
    situacao = order.get("situacao")
    if situacao in FINAL_STATE_REASONS:
        return Eligibility(False, FINAL_STATE_REASONS[situacao])
    if has_marker(order, STOCK_MARKER):
        return Eligibility(False, "Estoque já baixado para este pedido")
    if situacao not in STOCK_ALLOWED:
        return Eligibility(False, f"Situação '{situacao}' não permite baixa de estoque")
    return ELIGIBLE


def cancel_eligibility(order: Dict[str, Any]) -> Eligibility:
    situacao = order.get("situacao")
    if situacao in FINAL_STATE_REASONS:
        return Eligibility(False, FINAL_STATE_REASONS[situacao])
    if situacao in CANCEL_BLOCKED:
        return Eligibility(False, CANCEL_BLOCKED[situacao])
    if has_marker(order, CANCEL_MARKER):
        return Eligibility(False, "Cancelamento já registrado para este pedido")
    return ELIGIBLE
